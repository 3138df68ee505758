"""
Dependency checks behind the health and readiness probes.

The service is ready when the database answers and the gateway accepts the
configured credentials (a token can be obtained).
"""
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pix_donations.database.connection import get_session_factory
from pix_donations.errors import ExternalError
from pix_donations.integrations.pix_client import PixClient

logger = structlog.get_logger(__name__)

HEALTHY = "healthy"
UNHEALTHY = "unhealthy"


class HealthCheckError(Exception):
    """A dependency did not answer as expected."""


class HealthCheck:
    """Runs the dependency checks and aggregates their results."""

    def __init__(
        self,
        gateway: PixClient,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ) -> None:
        self.gateway = gateway
        self.session_factory = session_factory or get_session_factory()
        self._checks: Dict[str, Callable[[], Awaitable[Dict[str, Any]]]] = {
            "database": self.check_database,
            "pix_gateway": self.check_gateway,
        }

    async def check_database(self) -> Dict[str, Any]:
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
        except Exception as e:
            raise HealthCheckError(f"Database unreachable: {e}") from e
        return {"message": "Database connection successful"}

    async def check_gateway(self) -> Dict[str, Any]:
        try:
            await self.gateway.check_credentials()
        except ExternalError as e:
            raise HealthCheckError(f"Gateway rejected credentials: {e}") from e
        return {
            "message": "Gateway credentials accepted",
            "sandbox": self.gateway.settings.pix_sandbox,
        }

    async def _run(self, name: str) -> Dict[str, Any]:
        started = time.perf_counter()
        try:
            result = {"status": HEALTHY, **await self._checks[name]()}
        except HealthCheckError as e:
            logger.error("health_check_failed", check=name, error=str(e))
            result = {"status": UNHEALTHY, "error": str(e)}
        result["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
        return result

    async def check_all(self) -> Dict[str, Any]:
        """
        Run every dependency check.

        Returns:
            Dict[str, Any]: ``status`` is healthy only if every check passed
        """
        checks = {name: await self._run(name) for name in self._checks}
        overall = HEALTHY if all(c["status"] == HEALTHY for c in checks.values()) else UNHEALTHY
        return {"status": overall, "checks": checks}

    async def liveness(self) -> Dict[str, Any]:
        """The process is serving requests; dependencies are not consulted."""
        return {"status": "alive", "message": "Application is running"}

    async def readiness(self) -> Dict[str, Any]:
        return await self.check_all()
