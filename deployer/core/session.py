"""Deployment sessions: the entry point that starts and tracks runs."""

import asyncio
from uuid import uuid4

import structlog

from deployer.core.events import ChannelSink, ProgressChannel, Subscription
from deployer.core.exceptions import DeploymentNotFoundError, ValidationError
from deployer.core.orchestrator import DeploymentOrchestrator
from deployer.models.deployment import DeploymentRequest, DeploymentResult
from deployer.utils.logging import get_logger

logger = get_logger(__name__)


class DeploymentSessionManager:
    """Accepts deployment requests and runs them in the background.

    Note: Runs live only in this process; nothing survives a restart.
    """

    def __init__(
        self,
        channel: ProgressChannel,
        orchestrator: DeploymentOrchestrator,
        subscriber_wait_seconds: float = 0.0,
    ):
        self.channel = channel
        self.orchestrator = orchestrator
        self.subscriber_wait_seconds = subscriber_wait_seconds
        self._runs: dict[str, asyncio.Task[DeploymentResult]] = {}

    def submit(self, request: DeploymentRequest) -> str:
        """Validate ``request``, start its run and return the deployment id.

        Returns without waiting for the run. Must be called from a running
        event loop.

        Raises:
            ValidationError: A required field is blank
        """
        missing = request.blank_fields()
        if missing:
            logger.error("session.invalid_request", missing=missing)
            raise ValidationError(
                "Missing required form fields (Organization Name, Gemini Key).",
                {"missing": missing},
            )

        deployment_id = str(uuid4())
        task = asyncio.create_task(
            self._run(deployment_id, request),
            name=f"deployment-{deployment_id}",
        )
        self._runs[deployment_id] = task
        task.add_done_callback(lambda _: self._finish(deployment_id))

        logger.info("session.submitted", deployment_id=deployment_id)
        return deployment_id

    def subscribe(self, deployment_id: str) -> Subscription:
        """Attach the caller to a live deployment's progress.

        Raises:
            DeploymentNotFoundError: Unknown id, or the run already published
                its completion event
        """
        if not self.is_active(deployment_id) or self.channel.is_completed(deployment_id):
            raise DeploymentNotFoundError(deployment_id)
        return self.channel.connect(deployment_id)

    def is_active(self, deployment_id: str) -> bool:
        task = self._runs.get(deployment_id)
        return task is not None and not task.done()

    @property
    def active_count(self) -> int:
        return sum(1 for task in self._runs.values() if not task.done())

    async def wait(self, deployment_id: str) -> DeploymentResult | None:
        """Wait for a run to finish; None if it is not tracked."""
        task = self._runs.get(deployment_id)
        if task is None:
            return None
        return await task

    async def shutdown(self) -> None:
        """Cancel in-flight runs."""
        tasks = [task for task in self._runs.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            logger.warning("session.shutdown.cancelled", count=len(tasks))
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(
        self, deployment_id: str, request: DeploymentRequest
    ) -> DeploymentResult:
        # Runs in its own task context; the binding stays with this run
        structlog.contextvars.bind_contextvars(deployment_id=deployment_id)

        attached = await self.channel.wait_for_subscriber(
            deployment_id, self.subscriber_wait_seconds
        )
        if not attached:
            logger.warning("session.started_without_subscriber", deployment_id=deployment_id)

        result = await self.orchestrator.run(
            deployment_id, request, ChannelSink(self.channel, deployment_id)
        )
        logger.info(
            "session.finished",
            deployment_id=deployment_id,
            success=result.success,
            duration_ms=result.duration_ms,
        )
        return result

    def _finish(self, deployment_id: str) -> None:
        self._runs.pop(deployment_id, None)
        # Cancelled runs never publish completion; end any viewer still attached
        self.channel.close(deployment_id)
        self.channel.forget(deployment_id)
