"""
Health checks following the Health Check Response Format for HTTP APIs draft
and Kubernetes probe conventions.
"""

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.engine import Engine
from typing import Callable, Dict, Any, Iterable, Optional
from datetime import datetime, timezone
from enum import Enum
import os
import time
import psutil
import logging

logger = logging.getLogger(__name__)

# Available host memory thresholds for readiness
MEMORY_FAIL_MB = 100
MEMORY_WARN_MB = 500


class HealthStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class ServiceHealth:
    """
    Liveness, readiness and startup probes for one service.

    ``engine_factory`` returns the SQLAlchemy engine to probe;
    ``config_check`` returns the names of missing required settings.
    """

    def __init__(
        self,
        service_name: str,
        version: str = "1.0.0",
        engine_factory: Optional[Callable[[], Engine]] = None,
        config_check: Optional[Callable[[], Iterable[str]]] = None,
    ):
        self.service_name = service_name
        self.version = version
        self.engine_factory = engine_factory
        self.config_check = config_check
        self.start_time = time.time()
        self.checks_performed = 0
        self.last_check_time = None

    def create_health_router(self) -> APIRouter:
        router = APIRouter(tags=["health"])

        @router.get("/health", status_code=status.HTTP_200_OK)
        async def health_check() -> Dict[str, Any]:
            """Lightweight liveness check for load balancers"""
            return {
                "status": HealthStatus.PASS,
                "service": self.service_name,
                "version": self.version,
                "releaseId": os.getenv("RELEASE_ID", "unknown"),
                "timestamp": _now()
            }

        @router.get("/health/live", status_code=status.HTTP_200_OK)
        async def liveness() -> Dict[str, Any]:
            return {"status": "alive"}

        @router.get("/health/ready")
        def readiness() -> JSONResponse:
            """Readiness probe: database, configuration and host resources"""
            checks = self.perform_readiness_checks()
            overall_status = self.calculate_overall_status(checks)
            status_code = (
                status.HTTP_200_OK if overall_status != HealthStatus.FAIL
                else status.HTTP_503_SERVICE_UNAVAILABLE
            )
            return JSONResponse(status_code=status_code, content={
                "status": overall_status,
                "version": self.version,
                "releaseId": os.getenv("RELEASE_ID", "unknown"),
                "checks": checks,
                "serviceId": self.service_name,
                "description": f"{self.service_name} microservice",
                "timestamp": _now()
            })

        @router.get("/metrics")
        async def metrics() -> Dict[str, Any]:
            process = psutil.Process()
            with process.oneshot():
                rss = process.memory_info().rss
                threads = process.num_threads()
            return {
                "service": self.service_name,
                "version": self.version,
                "uptime_seconds": round(time.time() - self.start_time, 1),
                "readiness_checks": self.checks_performed,
                "timestamp": _now(),
                "process": {"memory_rss_bytes": rss, "threads": threads},
                "database_pool": self._pool_status(),
            }

        return router

    def _pool_status(self) -> Optional[str]:
        if self.engine_factory is None:
            return None
        return self.engine_factory().pool.status()

    def perform_readiness_checks(self) -> Dict[str, Dict[str, Any]]:
        self.checks_performed += 1
        self.last_check_time = time.time()

        checks = {}
        if self.engine_factory is not None:
            checks["database:connectivity"] = self._check_database()
        if self.config_check is not None:
            checks["config:environment"] = self._check_configuration()
        checks["system:memory"] = self._check_memory()
        return checks

    def _check_database(self) -> Dict[str, Any]:
        try:
            start_time = time.time()
            with self.engine_factory().connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
            return {
                "status": HealthStatus.PASS,
                "componentType": "datastore",
                "observedValue": f"{(time.time() - start_time) * 1000:.2f}",
                "observedUnit": "ms",
                "time": _now()
            }
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {
                "status": HealthStatus.FAIL,
                "componentType": "datastore",
                "output": str(e),
                "time": _now()
            }

    def _check_configuration(self) -> Dict[str, Any]:
        missing = list(self.config_check())
        if missing:
            # Orders can still be read and progressed without a gateway
            return {
                "status": HealthStatus.WARN,
                "componentType": "configuration",
                "output": f"Missing settings: {', '.join(missing)}",
                "time": _now()
            }
        return {"status": HealthStatus.PASS, "componentType": "configuration", "time": _now()}

    def _check_memory(self) -> Dict[str, Any]:
        try:
            available_mb = psutil.virtual_memory().available / (1024 ** 2)
        except (OSError, psutil.Error) as e:
            return {"status": HealthStatus.WARN, "componentType": "system", "output": str(e), "time": _now()}
        if available_mb < MEMORY_FAIL_MB:
            status_val = HealthStatus.FAIL
        elif available_mb < MEMORY_WARN_MB:
            status_val = HealthStatus.WARN
        else:
            status_val = HealthStatus.PASS
        return {
            "status": status_val,
            "componentType": "system",
            "observedValue": round(available_mb, 2),
            "observedUnit": "MB",
            "time": _now()
        }

    @staticmethod
    def calculate_overall_status(checks: Dict[str, Dict[str, Any]]) -> HealthStatus:
        statuses = [check.get("status", HealthStatus.PASS) for check in checks.values()]
        if HealthStatus.FAIL in statuses:
            return HealthStatus.FAIL
        if HealthStatus.WARN in statuses:
            return HealthStatus.WARN
        return HealthStatus.PASS
