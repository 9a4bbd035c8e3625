"""
History store: the persistence contract used by collection and analysis, and
the read contract used by the reporting surfaces.

All timestamps are naive UTC. Usage snapshots are immutable and unique per
container and minute; resource request records are append-only and the newest
one is authoritative. Several analyses may exist per container, the one with
the greatest id is the current one.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Any, Iterator, List, Optional

from sqlalchemy import Select, case, distinct, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.base import ClusterStatistics, UsagePoint, WorkloadSummary
from ..core.base.rightsizing import ProvisioningStatus
from ..core.config import GIB
from ..core.exceptions import NotFoundError, StoreError, ValidationError
from ..core.timeutil import utcnow
from .database import Database
from .models import Analysis, Container, MetricsSnapshot, Pod, Recommendation, ResourceRequest

logger = logging.getLogger(__name__)

SORT_KEYS = ("savings", "waste", "name")
SEARCH_LIMIT = 50
HISTORY_LIMIT = 100


@dataclass(frozen=True)
class ContainerIdentity:
    container_id: int
    namespace: str
    pod_name: str
    container_name: str


@dataclass
class WorkloadDetail:
    """One pod's current projection, its latest analysis and recent usage"""
    summary: WorkloadSummary
    analysis: Analysis
    usage_history: List[UsagePoint]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pod": self.summary.to_dict(),
            "analysis": self.analysis.to_dict(),
            "usage_history": [point.to_dict() for point in self.usage_history],
        }


class HistoryStore:
    """Repository over the relational history store"""

    def __init__(self, database: Database):
        self.db = database

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        try:
            with self.db.session() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Store operation '{operation}' failed: {e}")
            raise StoreError(f"{operation} failed: {e}") from e

    def _insert(self, table):
        if self.db.dialect == "postgresql":
            return postgresql.insert(table)
        return sqlite.insert(table)

    # ------------------------------------------------------------------
    # Write contract

    def upsert_pod(self, namespace: str, pod_name: str, now: Optional[datetime] = None) -> int:
        """Create the pod or refresh its updated_at; returns the pod id"""
        now = now or utcnow()
        table = Pod.__table__
        stmt = self._insert(table).values(
            namespace=namespace, pod_name=pod_name, created_at=now, updated_at=now
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.namespace, table.c.pod_name],
            set_={"updated_at": stmt.excluded.updated_at},
        ).returning(table.c.id)

        with self._session("upsert_pod") as session:
            return session.execute(stmt).scalar_one()

    def upsert_container(self, pod_id: int, container_name: str, image: str,
                         now: Optional[datetime] = None) -> int:
        """Create the container or refresh its image and updated_at; returns the container id"""
        now = now or utcnow()
        table = Container.__table__
        stmt = self._insert(table).values(
            pod_id=pod_id, container_name=container_name, image=image,
            created_at=now, updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.pod_id, table.c.container_name],
            set_={"image": stmt.excluded.image, "updated_at": stmt.excluded.updated_at},
        ).returning(table.c.id)

        with self._session("upsert_container") as session:
            return session.execute(stmt).scalar_one()

    def record_resource_request(self, container_id: int, cpu_request: float, cpu_limit: float,
                                mem_request: int, mem_limit: int,
                                now: Optional[datetime] = None) -> int:
        record = ResourceRequest(
            container_id=container_id,
            cpu_request=cpu_request,
            cpu_limit=cpu_limit,
            mem_request=mem_request,
            mem_limit=mem_limit,
            updated_at=now or utcnow(),
        )
        with self._session("record_resource_request") as session:
            session.add(record)
            session.flush()
            return record.id

    def record_snapshot(self, container_id: int, timestamp: datetime,
                        cpu_usage: float, memory_usage: int) -> bool:
        """Insert a usage snapshot; returns False when one already exists for that minute"""
        table = MetricsSnapshot.__table__
        stmt = self._insert(table).values(
            container_id=container_id, timestamp=timestamp,
            cpu_usage=cpu_usage, memory_usage=memory_usage,
        )
        stmt = stmt.on_conflict_do_nothing(
            index_elements=[table.c.container_id, table.c.timestamp]
        ).returning(table.c.id)

        with self._session("record_snapshot") as session:
            return session.execute(stmt).first() is not None

    def containers_with_snapshots(self) -> List[int]:
        """Ids of containers that have at least one usage snapshot"""
        stmt = (
            select(Container.id)
            .where(select(MetricsSnapshot.id).where(MetricsSnapshot.container_id == Container.id).exists())
            .order_by(Container.id)
        )
        with self._session("containers_with_snapshots") as session:
            return list(session.scalars(stmt))

    def get_container_identity(self, container_id: int) -> ContainerIdentity:
        stmt = (
            select(Pod.namespace, Pod.pod_name, Container.container_name)
            .join(Container, Container.pod_id == Pod.id)
            .where(Container.id == container_id)
        )
        with self._session("get_container_identity") as session:
            row = session.execute(stmt).first()
        if row is None:
            raise NotFoundError(f"Container {container_id} not found")
        return ContainerIdentity(container_id, row.namespace, row.pod_name, row.container_name)

    def snapshots_since(self, container_id: int, since: datetime,
                        until: Optional[datetime] = None) -> List[MetricsSnapshot]:
        """Snapshots of one container with since <= timestamp [<= until], oldest first"""
        stmt = select(MetricsSnapshot).where(
            MetricsSnapshot.container_id == container_id,
            MetricsSnapshot.timestamp >= since,
        )
        if until is not None:
            stmt = stmt.where(MetricsSnapshot.timestamp <= until)
        stmt = stmt.order_by(MetricsSnapshot.timestamp)

        with self._session("snapshots_since") as session:
            return list(session.scalars(stmt))

    def latest_resource_request(self, container_id: int) -> Optional[ResourceRequest]:
        stmt = (
            select(ResourceRequest)
            .where(ResourceRequest.container_id == container_id)
            .order_by(ResourceRequest.updated_at.desc(), ResourceRequest.id.desc())
            .limit(1)
        )
        with self._session("latest_resource_request") as session:
            return session.scalars(stmt).first()

    def save_analysis(self, analysis: Analysis) -> Analysis:
        with self._session("save_analysis") as session:
            session.add(analysis)
            session.flush()
        return analysis

    def save_recommendation(self, recommendation: Recommendation) -> Recommendation:
        with self._session("save_recommendation") as session:
            session.add(recommendation)
            session.flush()
        return recommendation

    # ------------------------------------------------------------------
    # Read contract

    @staticmethod
    def _latest_analysis_ids():
        return select(func.max(Analysis.id)).group_by(Analysis.container_id)

    def _projection(self) -> Select:
        return (
            select(
                Pod.namespace,
                Pod.pod_name,
                Container.container_name,
                Analysis.status,
                Analysis.cpu_waste_percent,
                Analysis.memory_waste_percent,
                Analysis.monthly_savings,
                Analysis.current_cpu_request,
                Analysis.current_mem_request,
                Analysis.recommended_cpu,
                Analysis.recommended_memory,
                Analysis.confidence,
            )
            .join(Container, Container.pod_id == Pod.id)
            .join(Analysis, Analysis.container_id == Container.id)
            .where(Analysis.id.in_(self._latest_analysis_ids()))
        )

    @staticmethod
    def _to_summary(row) -> WorkloadSummary:
        return WorkloadSummary(
            namespace=row.namespace,
            pod_name=row.pod_name,
            container_name=row.container_name,
            status=row.status,
            cpu_waste_percent=row.cpu_waste_percent,
            memory_waste_percent=row.memory_waste_percent,
            monthly_savings=row.monthly_savings,
            current_cpu=row.current_cpu_request,
            current_memory=row.current_mem_request,
            recommended_cpu=row.recommended_cpu,
            recommended_memory=row.recommended_memory,
            confidence=row.confidence,
        )

    def list_workloads(self, namespace: Optional[str] = None, status: Optional[str] = None,
                       sort_by: Optional[str] = None, limit: Optional[int] = None) -> List[WorkloadSummary]:
        """Current projection per container, sorted by savings (default), waste or name"""
        if sort_by and sort_by not in SORT_KEYS:
            raise ValidationError(f"Unknown sort key '{sort_by}', expected one of {', '.join(SORT_KEYS)}")

        stmt = self._projection()
        if namespace:
            stmt = stmt.where(Pod.namespace == namespace)
        if status:
            stmt = stmt.where(Analysis.status == status)

        if sort_by == "waste":
            stmt = stmt.order_by(Analysis.cpu_waste_percent.desc())
        elif sort_by == "name":
            stmt = stmt.order_by(Pod.pod_name.asc())
        else:
            stmt = stmt.order_by(Analysis.monthly_savings.desc())

        if limit and limit > 0:
            stmt = stmt.limit(limit)

        with self._session("list_workloads") as session:
            return [self._to_summary(row) for row in session.execute(stmt)]

    def search_workloads(self, term: str) -> List[WorkloadSummary]:
        """Case-insensitive substring match on pod name or namespace"""
        pattern = f"%{term.lower()}%"
        stmt = (
            self._projection()
            .where(or_(func.lower(Pod.pod_name).like(pattern), func.lower(Pod.namespace).like(pattern)))
            .order_by(Analysis.monthly_savings.desc())
            .limit(SEARCH_LIMIT)
        )
        with self._session("search_workloads") as session:
            return [self._to_summary(row) for row in session.execute(stmt)]

    def get_workload_detail(self, namespace: str, pod_name: str) -> WorkloadDetail:
        stmt = (
            self._projection()
            .add_columns(Analysis.id.label("analysis_id"))
            .where(Pod.namespace == namespace, Pod.pod_name == pod_name)
            .order_by(Container.container_name)
            .limit(1)
        )

        with self._session("get_workload_detail") as session:
            row = session.execute(stmt).first()
            if row is None:
                raise NotFoundError(f"Pod {namespace}/{pod_name} not found")

            analysis = session.get(Analysis, row.analysis_id)
            snapshots = session.scalars(
                select(MetricsSnapshot)
                .where(MetricsSnapshot.container_id == analysis.container_id)
                .order_by(MetricsSnapshot.timestamp.desc())
                .limit(HISTORY_LIMIT)
            ).all()

        history = [UsagePoint(s.timestamp, s.cpu_usage, s.memory_usage) for s in snapshots]
        return WorkloadDetail(summary=self._to_summary(row), analysis=analysis, usage_history=history)

    def list_recommendations(self, confidence: Optional[str] = None, min_savings: float = 0,
                             limit: Optional[int] = None) -> List[Recommendation]:
        stmt = select(Recommendation)
        if confidence:
            stmt = stmt.where(Recommendation.confidence == confidence)
        if min_savings and min_savings > 0:
            stmt = stmt.where(Recommendation.monthly_savings >= min_savings)
        stmt = stmt.order_by(Recommendation.monthly_savings.desc(), Recommendation.id.desc())
        if limit and limit > 0:
            stmt = stmt.limit(limit)

        with self._session("list_recommendations") as session:
            return list(session.scalars(stmt))

    def get_recommendation(self, recommendation_id: int) -> Recommendation:
        with self._session("get_recommendation") as session:
            recommendation = session.get(Recommendation, recommendation_id)
        if recommendation is None:
            raise NotFoundError(f"Recommendation {recommendation_id} not found")
        return recommendation

    def mark_applied(self, recommendation_id: int, applied: bool) -> None:
        stmt = (
            update(Recommendation)
            .where(Recommendation.id == recommendation_id)
            .values(applied=applied)
        )
        with self._session("mark_applied") as session:
            result = session.execute(stmt)
            if result.rowcount == 0:
                raise NotFoundError(f"Recommendation {recommendation_id} not found")

    def get_statistics(self) -> ClusterStatistics:
        """Cluster totals over the current analysis of every container"""
        over = ProvisioningStatus.OVER_PROVISIONED.value
        under = ProvisioningStatus.UNDER_PROVISIONED.value
        optimal = ProvisioningStatus.OPTIMAL.value

        stmt = (
            select(
                func.count(distinct(Pod.id)),
                func.count(distinct(case((Analysis.status == over, Pod.id)))),
                func.count(distinct(case((Analysis.status == under, Pod.id)))),
                func.count(distinct(case((Analysis.status == optimal, Pod.id)))),
                func.coalesce(func.sum(Analysis.monthly_savings), 0.0),
                func.coalesce(func.sum(case(
                    (Analysis.status == over, Analysis.current_cpu_request - Analysis.recommended_cpu),
                    else_=0.0,
                )), 0.0),
                func.coalesce(func.sum(case(
                    (Analysis.status == over, Analysis.current_mem_request - Analysis.recommended_memory),
                    else_=0,
                )), 0),
            )
            .select_from(Pod)
            .join(Container, Container.pod_id == Pod.id)
            .join(Analysis, Analysis.container_id == Container.id)
            .where(Analysis.id.in_(self._latest_analysis_ids()))
        )

        with self._session("get_statistics") as session:
            row = session.execute(stmt).one()
            last_analysis = session.scalar(select(func.max(Analysis.analyzed_at)))
            last_collection = session.scalar(select(func.max(MetricsSnapshot.timestamp)))

        total, over_count, under_count, optimal_count, savings, cpu_waste, mem_waste = row
        return ClusterStatistics(
            total_pods=total,
            over_provisioned=over_count,
            under_provisioned=under_count,
            optimal=optimal_count,
            total_monthly_savings=float(savings),
            total_cpu_waste_cores=float(cpu_waste),
            total_memory_waste_gb=float(mem_waste) / GIB,
            last_analysis=last_analysis,
            last_collection=last_collection,
        )

    def list_namespaces(self) -> List[str]:
        stmt = select(Pod.namespace).distinct().order_by(Pod.namespace)
        with self._session("list_namespaces") as session:
            return list(session.scalars(stmt))
