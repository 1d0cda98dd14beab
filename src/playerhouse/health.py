"""Connection health derived from consecutive confirmation failures."""

from src.logging_utils import get_logger
from src.models import HealthStatus

logger = get_logger(__name__)

POOR_THRESHOLD = 3


class ConnectionHealthTracker:
    """Advisory health signal: 0 failures good, 1-2 degraded, 3+ poor."""

    def __init__(self):
        self.failure_count = 0

    @property
    def status(self) -> HealthStatus:
        if self.failure_count >= POOR_THRESHOLD:
            return "poor"
        if self.failure_count >= 1:
            return "degraded"
        return "good"

    def record_failure(self) -> HealthStatus:
        self.failure_count += 1
        logger.info(f"Connection health {self.status} ({self.failure_count} consecutive failures)")
        return self.status

    def record_success(self) -> HealthStatus:
        if self.failure_count:
            logger.info("Connection health recovered")
        self.failure_count = 0
        return self.status

    def reset(self) -> None:
        self.failure_count = 0

    def snapshot(self) -> dict:
        return {"status": self.status, "failure_count": self.failure_count}
