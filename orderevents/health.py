"""
Health checks for liveness and readiness probes.
"""
from datetime import datetime, timezone
from typing import Dict, Any
import time
import psutil
from .logging import get_logger

logger = get_logger()


class HealthChecker:
    """
    Health checker for the orderevents service.

    Provides:
    - Liveness checks (is the service running?)
    - Readiness checks (can the pipeline accept and deliver events?)
    """

    def __init__(self, pipeline, service_name: str = "orderevents", version: str = "0.1.0"):
        self.pipeline = pipeline
        self.service_name = service_name
        self.version = version

    def liveness(self) -> Dict[str, Any]:
        """
        Liveness check - basic health check.

        Returns:
            dict: Health status with service info and timestamp
        """
        return {
            "status": "ok",
            "service": self.service_name,
            "version": self.version,
            "timestamp": _utc_now(),
        }

    async def readiness(self) -> Dict[str, Any]:
        """
        Readiness check.

        Checks:
        - Event store backend
        - Every queue backend
        - Disk space availability
        - Memory availability

        Returns:
            dict: Readiness status with detailed check results
        """
        checks = {
            "event_store": await self._check_backend(self.pipeline.store.health_check),
        }
        for name, queue in self.pipeline.queues.items():
            checks[f"queue:{name}"] = await self._check_backend(queue.health_check)
        checks["disk_space"] = self._check_disk_space()
        checks["memory"] = self._check_memory()

        overall_status = "ready"
        if any(check["status"] == "error" for check in checks.values()):
            overall_status = "not_ready"

        return {
            "status": overall_status,
            "service": self.service_name,
            "version": self.version,
            "timestamp": _utc_now(),
            "checks": checks,
        }

    async def _check_backend(self, health_check) -> Dict[str, Any]:
        start = time.time()
        healthy = await health_check()
        latency_ms = round((time.time() - start) * 1000, 2)
        if not healthy:
            return {"status": "error", "latency_ms": latency_ms}
        return {"status": "ok", "latency_ms": latency_ms}

    def _check_disk_space(self, threshold_gb: float = 1.0) -> Dict[str, Any]:
        """
        Check available disk space.

        Args:
            threshold_gb: Minimum available disk space in GB (default: 1.0)
        """
        try:
            disk = psutil.disk_usage("/")
        except (psutil.Error, OSError) as e:
            logger.warning("disk_health_check_failed", error=str(e))
            return {"status": "error", "error": str(e)}

        available_gb = disk.free / (1024**3)
        if available_gb < threshold_gb:
            status = "error"
        elif available_gb < threshold_gb * 2:
            status = "warning"
        else:
            status = "ok"

        return {
            "status": status,
            "available_gb": round(available_gb, 2),
            "total_gb": round(disk.total / (1024**3), 2),
            "used_percent": disk.percent,
        }

    def _check_memory(self, threshold_mb: float = 50.0) -> Dict[str, Any]:
        """
        Check available memory.

        Args:
            threshold_mb: Minimum available memory in MB (default: 50.0)
        """
        try:
            memory = psutil.virtual_memory()
        except (psutil.Error, OSError) as e:
            logger.warning("memory_health_check_failed", error=str(e))
            return {"status": "error", "error": str(e)}

        available_mb = memory.available / (1024**2)
        if available_mb < threshold_mb:
            status = "error"
        elif available_mb < threshold_mb * 2:
            status = "warning"
        else:
            status = "ok"

        return {
            "status": status,
            "available_mb": round(available_mb, 2),
            "total_mb": round(memory.total / (1024**2), 2),
            "used_percent": memory.percent,
        }


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
