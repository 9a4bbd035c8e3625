"""Relational history store"""

from .database import Database
from .repository import ContainerIdentity, HistoryStore, WorkloadDetail

__all__ = ['Database', 'HistoryStore', 'ContainerIdentity', 'WorkloadDetail']
