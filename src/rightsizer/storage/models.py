"""History store tables"""

from datetime import datetime
from typing import Dict, Any, List, Optional

from sqlalchemy import (
    BigInteger, Boolean, DateTime, Double, ForeignKey, Index, Integer, String, Text, UniqueConstraint
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from ..core.timeutil import utcnow


class Base(DeclarativeBase):
    pass


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class Pod(Base):
    __tablename__ = "pods"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    namespace: Mapped[str] = mapped_column(String(255), nullable=False)
    pod_name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    containers: Mapped[List["Container"]] = relationship(
        back_populates="pod", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        UniqueConstraint("namespace", "pod_name", name="uq_pods_namespace_pod_name"),
        Index("idx_pods_namespace", "namespace"),
    )


class Container(Base):
    __tablename__ = "containers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pod_id: Mapped[int] = mapped_column(ForeignKey("pods.id", ondelete="CASCADE"), nullable=False)
    container_name: Mapped[str] = mapped_column(String(255), nullable=False)
    image: Mapped[Optional[str]] = mapped_column(String(512))
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    pod: Mapped[Pod] = relationship(back_populates="containers")

    __table_args__ = (
        UniqueConstraint("pod_id", "container_name", name="uq_containers_pod_container"),
    )


class MetricsSnapshot(Base):
    """Immutable usage observation; one per container per minute"""
    __tablename__ = "metrics_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    container_id: Mapped[int] = mapped_column(ForeignKey("containers.id", ondelete="CASCADE"), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    cpu_usage: Mapped[float] = mapped_column(Double, nullable=False)  # cores
    memory_usage: Mapped[int] = mapped_column(BigInteger, nullable=False)  # bytes

    __table_args__ = (
        UniqueConstraint("container_id", "timestamp", name="uq_metrics_container_timestamp"),
        Index("idx_metrics_timestamp", "timestamp"),
    )


class ResourceRequest(Base):
    """Declared requests/limits; append-only, newest row wins"""
    __tablename__ = "resource_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    container_id: Mapped[int] = mapped_column(ForeignKey("containers.id", ondelete="CASCADE"), nullable=False)
    cpu_request: Mapped[float] = mapped_column(Double, nullable=False, default=0.0)
    cpu_limit: Mapped[float] = mapped_column(Double, nullable=False, default=0.0)
    mem_request: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    mem_limit: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_resource_requests_container_updated", "container_id", "updated_at"),
    )


class Analysis(Base):
    __tablename__ = "analyses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    container_id: Mapped[int] = mapped_column(ForeignKey("containers.id", ondelete="CASCADE"), nullable=False)
    analyzed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    window_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    window_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    sample_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    avg_cpu: Mapped[float] = mapped_column(Double)
    max_cpu: Mapped[float] = mapped_column(Double)
    p95_cpu: Mapped[float] = mapped_column(Double)
    p99_cpu: Mapped[float] = mapped_column(Double)
    avg_memory: Mapped[int] = mapped_column(BigInteger)
    max_memory: Mapped[int] = mapped_column(BigInteger)
    p95_memory: Mapped[int] = mapped_column(BigInteger)
    p99_memory: Mapped[int] = mapped_column(BigInteger)

    current_cpu_request: Mapped[float] = mapped_column(Double)
    current_mem_request: Mapped[int] = mapped_column(BigInteger)
    recommended_cpu: Mapped[float] = mapped_column(Double)
    recommended_memory: Mapped[int] = mapped_column(BigInteger)
    cpu_waste_percent: Mapped[float] = mapped_column(Double)
    memory_waste_percent: Mapped[float] = mapped_column(Double)
    monthly_savings: Mapped[float] = mapped_column(Double)
    status: Mapped[str] = mapped_column(String(50))
    confidence: Mapped[str] = mapped_column(String(50))

    __table_args__ = (
        Index("idx_analyses_status", "status"),
        Index("idx_analyses_container", "container_id"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "container_id": self.container_id,
            "analyzed_at": _iso(self.analyzed_at),
            "window_start": _iso(self.window_start),
            "window_end": _iso(self.window_end),
            "sample_count": self.sample_count,
            "avg_cpu": self.avg_cpu,
            "max_cpu": self.max_cpu,
            "p95_cpu": self.p95_cpu,
            "p99_cpu": self.p99_cpu,
            "avg_memory": self.avg_memory,
            "max_memory": self.max_memory,
            "p95_memory": self.p95_memory,
            "p99_memory": self.p99_memory,
            "current_cpu_request": self.current_cpu_request,
            "current_mem_request": self.current_mem_request,
            "recommended_cpu": self.recommended_cpu,
            "recommended_memory": self.recommended_memory,
            "cpu_waste_percent": self.cpu_waste_percent,
            "memory_waste_percent": self.memory_waste_percent,
            "monthly_savings": self.monthly_savings,
            "status": self.status,
            "confidence": self.confidence,
        }


class Recommendation(Base):
    """User-facing projection of an analysis; only `applied` changes after insert"""
    __tablename__ = "recommendations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    analysis_id: Mapped[int] = mapped_column(ForeignKey("analyses.id", ondelete="CASCADE"), nullable=False)
    namespace: Mapped[str] = mapped_column(String(255))
    pod_name: Mapped[str] = mapped_column(String(255))
    container_name: Mapped[str] = mapped_column(String(255))
    current_cpu: Mapped[float] = mapped_column(Double)
    current_memory: Mapped[int] = mapped_column(BigInteger)
    recommended_cpu: Mapped[float] = mapped_column(Double)
    recommended_memory: Mapped[int] = mapped_column(BigInteger)
    monthly_savings: Mapped[float] = mapped_column(Double)
    confidence: Mapped[str] = mapped_column(String(50))
    status: Mapped[str] = mapped_column(String(50))
    reason: Mapped[str] = mapped_column(Text)
    applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_recommendations_applied", "applied"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "analysis_id": self.analysis_id,
            "namespace": self.namespace,
            "pod_name": self.pod_name,
            "container_name": self.container_name,
            "current_cpu": self.current_cpu,
            "current_memory": self.current_memory,
            "recommended_cpu": self.recommended_cpu,
            "recommended_memory": self.recommended_memory,
            "monthly_savings": self.monthly_savings,
            "confidence": self.confidence,
            "status": self.status,
            "reason": self.reason,
            "applied": self.applied,
            "created_at": _iso(self.created_at),
        }
