"""Dependency injection for API endpoints."""

from typing import Annotated, Any

import pydantic
from fastapi import Depends, Request

from deployer.config import Settings
from deployer.core.events import ProgressChannel
from deployer.core.exceptions import ValidationError
from deployer.core.session import DeploymentSessionManager
from deployer.models.deployment import DeploymentRequest


async def get_app_settings(request: Request) -> Settings:
    """Get the settings the application was built with."""
    return request.app.state.settings


async def get_channel(request: Request) -> ProgressChannel:
    """Get the progress channel."""
    return request.app.state.channel


async def get_sessions(request: Request) -> DeploymentSessionManager:
    """Get the deployment session manager."""
    return request.app.state.sessions


async def get_deployment_request(request: Request) -> DeploymentRequest:
    """Read a deployment request from a JSON or form-encoded body."""
    content_type = request.headers.get("content-type", "")
    payload: Any
    try:
        if content_type.startswith("application/json"):
            payload = await request.json()
        else:
            payload = dict(await request.form())
    except ValueError as e:
        raise ValidationError(f"Malformed request body: {e}") from e

    if not isinstance(payload, dict):
        raise ValidationError("Request body must be an object.")

    try:
        return DeploymentRequest.model_validate(payload)
    except pydantic.ValidationError as e:
        raise ValidationError(
            "Invalid deployment request.",
            {"errors": e.errors(include_url=False, include_input=False, include_context=False)},
        ) from e


# Type aliases for cleaner signatures
SettingsDep = Annotated[Settings, Depends(get_app_settings)]
ChannelDep = Annotated[ProgressChannel, Depends(get_channel)]
SessionsDep = Annotated[DeploymentSessionManager, Depends(get_sessions)]
DeploymentRequestDep = Annotated[DeploymentRequest, Depends(get_deployment_request)]
