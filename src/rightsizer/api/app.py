"""FastAPI application serving rightsizing reports"""

from fastapi import FastAPI, Depends, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from contextlib import asynccontextmanager
from pydantic import BaseModel
from typing import Optional
import logging
import time

from ..core.config import get_settings, Settings
from ..core.logging import setup_logging, get_audit_logger
from ..core.monitoring import MetricsCollector, HealthChecker
from ..core.exceptions import RightsizerError, NotFoundError, StoreError
from ..core.timeutil import utcnow
from ..reporting.patches import ResourcePatch
from ..storage import Database, HistoryStore

logger = logging.getLogger(__name__)


class ApplyRequest(BaseModel):
    applied: bool


def get_store(request: Request) -> HistoryStore:
    return request.app.state.store


def register_health_checks(app: FastAPI) -> None:
    """Register readiness checks against the app's store"""

    def check_database() -> bool:
        return app.state.store.db.ping()

    app.state.health_checker.register_check("database", check_database)


def create_app(settings: Optional[Settings] = None, store: Optional[HistoryStore] = None,
               metrics: Optional[MetricsCollector] = None, configure_logging: bool = False) -> FastAPI:
    """
    Build the reporting API.

    Args:
        settings: Effective settings; the cached settings are used when omitted
        store: History store to serve from; built from settings.database when omitted
        metrics: Collector exported on /metrics
        configure_logging: Install the logging configuration from settings on startup
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if configure_logging:
            setup_logging(
                level=settings.logging.level,
                structured=settings.logging.structured,
                console=settings.logging.console,
                log_file=settings.logging.file,
                audit_file=settings.logging.audit_file,
                fmt=settings.logging.format,
            )

        owns_store = app.state.store is None
        if owns_store:
            database = Database.from_config(settings.database)
            database.init_schema()
            app.state.store = HistoryStore(database)

        logger.info(f"{settings.app_name} API started")
        yield

        if owns_store:
            app.state.store.db.dispose()
            app.state.store = None
        logger.info(f"{settings.app_name} API shutdown complete")

    app = FastAPI(
        title="kube-rightsizer API",
        description="Kubernetes resource right-sizing reports",
        version=settings.version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.metrics = metrics or MetricsCollector()
    app.state.health_checker = HealthChecker()
    register_health_checks(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.allowed_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests"""
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        logger.info(f"{request.method} {request.url.path} -> {response.status_code} in {duration:.3f}s",
                    extra={"duration": duration})
        app.state.metrics.increment_counter("api.requests", tags={
            "method": request.method,
            "status": str(response.status_code),
        })
        app.state.metrics.record_histogram("api.request.duration", duration, {"method": request.method})
        return response

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": str(exc)})

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        logger.error(f"Store error on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to read from the history store"},
        )

    @app.exception_handler(RightsizerError)
    async def rightsizer_error_handler(request: Request, exc: RightsizerError):
        logger.error(f"Application error: {exc}")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid request", "details": exc.errors()},
        )

    @app.get("/health")
    async def health():
        """Basic health check"""
        return {"status": "healthy", "timestamp": utcnow().isoformat()}

    @app.get("/health/ready")
    def readiness():
        """Readiness probe: the history store must answer"""
        health_status = app.state.health_checker.check_health()
        body = {
            "status": "ready" if health_status.healthy else "not ready",
            "checks": health_status.checks,
            "message": health_status.message,
        }
        if not health_status.healthy:
            return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body)
        return body

    @app.get("/metrics")
    async def metrics_endpoint():
        """Prometheus metrics endpoint"""
        return PlainTextResponse(app.state.metrics.export_prometheus())

    @app.get("/api/pods")
    def list_pods(
        namespace: Optional[str] = None,
        status_filter: Optional[str] = Query(None, alias="status"),
        sort_by: Optional[str] = None,
        limit: int = settings.api.default_page_size,
        search: Optional[str] = None,
        store: HistoryStore = Depends(get_store),
    ):
        if search:
            pods = store.search_workloads(search)
        else:
            pods = store.list_workloads(namespace=namespace, status=status_filter, sort_by=sort_by, limit=limit)
        return {"pods": [p.to_dict() for p in pods], "total": len(pods), "page": 1}

    @app.get("/api/pod/{namespace}/{name}")
    def pod_detail(namespace: str, name: str, store: HistoryStore = Depends(get_store)):
        return store.get_workload_detail(namespace, name).to_dict()

    @app.get("/api/recommendations")
    def list_recommendations(
        confidence: Optional[str] = None,
        min_savings: float = 0,
        limit: int = 100,
        store: HistoryStore = Depends(get_store),
    ):
        recommendations = store.list_recommendations(confidence=confidence, min_savings=min_savings, limit=limit)
        return {
            "recommendations": [r.to_dict() for r in recommendations],
            "total_savings": sum(r.monthly_savings for r in recommendations),
            "total_count": len(recommendations),
        }

    @app.get("/api/recommendations/{recommendation_id}/yaml")
    def recommendation_yaml(recommendation_id: int, store: HistoryStore = Depends(get_store)):
        patch = ResourcePatch.from_recommendation(store.get_recommendation(recommendation_id))
        return Response(
            content=patch.to_yaml(),
            media_type="text/yaml",
            headers={"Content-Disposition": f"attachment; filename={patch.filename}"},
        )

    @app.post("/api/recommendations/{recommendation_id}/apply")
    def apply_recommendation(recommendation_id: int, body: ApplyRequest,
                             store: HistoryStore = Depends(get_store)):
        store.mark_applied(recommendation_id, body.applied)
        get_audit_logger().log_event(
            "recommendation", "apply" if body.applied else "unapply",
            resource=f"recommendation:{recommendation_id}", details={"source": "api"},
        )
        return {"success": True, "message": "Recommendation updated successfully"}

    @app.get("/api/stats")
    def stats(store: HistoryStore = Depends(get_store)):
        return store.get_statistics().to_dict()

    @app.get("/api/namespaces")
    def namespaces(store: HistoryStore = Depends(get_store)):
        return {"namespaces": store.list_namespaces()}

    return app
