from .collection_cycle import CollectionEngine, CycleContext, CycleResult, EntityResult, Outcome

__all__ = ['CollectionEngine', 'CycleContext', 'CycleResult', 'EntityResult', 'Outcome']
