"""
Health check endpoints for liveness and readiness probes.
"""
from datetime import datetime, timezone
from typing import Dict, Any
import time
import psutil
from .logging import get_logger
from .services.credentials import CredentialStore, StoreError

logger = get_logger()


class HealthChecker:
    """
    Health checker for the QuillAuth service.

    Provides:
    - Liveness checks (is the service running?)
    - Readiness checks (can the service handle traffic?)
    """

    def __init__(self, store: CredentialStore, service_name: str = "quillauth", version: str = "0.1.0"):
        self.store = store
        self.service_name = service_name
        self.version = version

    @staticmethod
    def _timestamp() -> str:
        return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

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
            "timestamp": self._timestamp(),
        }

    def readiness(self) -> Dict[str, Any]:
        """
        Readiness check.

        Checks:
        - Credential store connectivity
        - Disk space availability
        - Memory availability

        Returns:
            dict: Readiness status with detailed check results
        """
        checks = {
            "store": self._check_store(),
            "disk_space": self._check_disk_space(),
            "memory": self._check_memory(),
        }
        # Warnings are reported but do not take the service out of rotation
        overall_status = "ready"
        if any(check["status"] == "error" for check in checks.values()):
            overall_status = "not_ready"

        return {
            "status": overall_status,
            "service": self.service_name,
            "version": self.version,
            "timestamp": self._timestamp(),
            "checks": checks,
        }

    def _check_store(self) -> Dict[str, Any]:
        start = time.time()
        try:
            healthy = self.store.health_check()
        except StoreError as e:
            logger.warning("store_health_check_failed", error=str(e))
            return {"status": "error", "error": str(e)}

        if not healthy:
            logger.warning("store_health_check_failed", error="store unreachable")
            return {"status": "error", "error": "store unreachable"}

        return {
            "status": "ok",
            "backend": type(self.store).__name__,
            "latency_ms": round((time.time() - start) * 1000, 2),
        }

    def _check_disk_space(self, threshold_gb: float = 1.0) -> Dict[str, Any]:
        """
        Check available disk space.

        Args:
            threshold_gb: Minimum available disk space in GB (default: 1.0)
        """
        try:
            disk = psutil.disk_usage("/")
        except OSError as e:
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
        except (OSError, psutil.Error) as e:
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
