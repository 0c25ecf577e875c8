from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from estimator.app.domains.job.models import Job
from estimator.app.infrastructure.redis import RedisClient


@dataclass
class HandlerContext:
    """Context passed to job handlers for accessing services."""

    session: AsyncSession
    job: Job
    redis_client: Optional[RedisClient] = None


@dataclass
class HandlerResult:
    """Result returned from a job handler.

    ``retryable`` failures are requeued while the job has attempts left.
    ``follow_up_jobs`` are jobs the handler queued, announced after commit.
    """

    success: bool
    data: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    retryable: bool = False
    follow_up_jobs: list[Job] = field(default_factory=list)


class JobHandler(ABC):
    """Base class for job handlers."""

    @abstractmethod
    async def handle(self, context: HandlerContext) -> HandlerResult:
        """
        Execute the job.

        Args:
            context: Handler context with session and job information.

        Returns:
            HandlerResult indicating success/failure and any result data.
        """
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Handler name for logging and identification."""
        ...
