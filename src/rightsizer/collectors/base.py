from abc import ABC, abstractmethod
from typing import Dict, List, Optional
import logging

from ..core.base import UsageReading, WorkloadUnit


class BaseSampleSource(ABC):
    """Abstract source of running workload units and their current usage"""

    def __init__(self, name: str = None):
        self.name = name or self.__class__.__name__
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def list_running_units(self, namespace: Optional[str] = None) -> List[WorkloadUnit]:
        """
        List units, optionally restricted to one namespace.

        Raises:
            SourceUnavailableError: The inventory cannot be listed
        """
        pass

    @abstractmethod
    def get_usage(self, namespace: str, unit_name: str) -> Dict[str, UsageReading]:
        """
        Current usage of one unit keyed by container name.

        Raises:
            SourceUnavailableError: The usage backend is unreachable or has no data for the unit
        """
        pass

    def health_check(self) -> bool:
        """Whether the source can currently be reached"""
        try:
            self.list_running_units()
            return True
        except Exception as e:
            self.logger.warning(f"{self.name} health check failed: {e}")
            return False
