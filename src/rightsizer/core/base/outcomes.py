from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, List, Optional


class Outcome(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class EntityResult:
    """Tagged result of one per-entity operation within a cycle"""

    entity: str
    outcome: Outcome
    reason: Optional[str] = None
    error: Optional[str] = None
    children: List["EntityResult"] = field(default_factory=list)

    @classmethod
    def success(cls, entity: str, children: List["EntityResult"] = None) -> "EntityResult":
        return cls(entity, Outcome.SUCCESS, children=children or [])

    @classmethod
    def skipped(cls, entity: str, reason: str) -> "EntityResult":
        return cls(entity, Outcome.SKIPPED, reason=reason)

    @classmethod
    def failed(cls, entity: str, error: Exception, children: List["EntityResult"] = None) -> "EntityResult":
        return cls(entity, Outcome.FAILED, error=str(error), children=children or [])

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        data = {"entity": self.entity, "outcome": self.outcome.value}
        if self.reason:
            data["reason"] = self.reason
        if self.error:
            data["error"] = self.error
        if self.children:
            data["children"] = [child.to_dict() for child in self.children]
        return data
