"""Sample sources and the ingestion reconciler"""

from .base import BaseSampleSource
from .reconciler import Reconciler, admit_unit

__all__ = ['BaseSampleSource', 'Reconciler', 'admit_unit']
