"""Deployment endpoints: start a deployment and stream its progress."""

import asyncio

from fastapi import APIRouter, status
from sse_starlette.sse import EventSourceResponse

from deployer.api.deps import (
    ChannelDep,
    DeploymentRequestDep,
    SessionsDep,
    SettingsDep,
)
from deployer.core.events import ProgressEvent
from deployer.models.deployment import DeploymentAccepted
from deployer.utils.logging import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.post(
    "/deploy",
    response_model=DeploymentAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start a deployment",
    description="Returns the deployment id immediately; progress is streamed from /status/{deployment_id}.",
)
async def start_deployment(
    data: DeploymentRequestDep,
    sessions: SessionsDep,
) -> DeploymentAccepted:
    """Start a deployment in the background."""
    deployment_id = sessions.submit(data)
    return DeploymentAccepted(deployment_id=deployment_id)


@router.get(
    "/status/{deployment_id}",
    summary="Stream deployment progress (SSE)",
)
async def stream_deployment_status(
    deployment_id: str,
    sessions: SessionsDep,
    channel: ChannelDep,
    settings: SettingsDep,
) -> EventSourceResponse:
    """Stream progress events for a deployment using Server-Sent Events."""
    subscription = sessions.subscribe(deployment_id)
    logger.info("status.client_connected", deployment_id=deployment_id)

    async def event_generator():
        try:
            yield {
                "data": ProgressEvent(message="Connected to status updates.").to_json(),
            }

            # Stream events until the deployment completes or the client disconnects
            while True:
                try:
                    event = await asyncio.wait_for(
                        subscription.get(), timeout=settings.sse_keepalive_seconds
                    )
                except asyncio.TimeoutError:
                    yield {"event": "keepalive", "data": "{}"}
                    continue

                if event is None:
                    break
                yield {"data": event.to_json()}

        finally:
            logger.info("status.client_disconnected", deployment_id=deployment_id)
            channel.disconnect(deployment_id, subscription)

    return EventSourceResponse(event_generator())
