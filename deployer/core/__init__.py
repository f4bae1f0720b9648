"""Core functionality for the deployer."""

from deployer.core.exceptions import (
    CommandFailure,
    CommandTimeoutError,
    ConfigurationError,
    ConflictError,
    DeployerError,
    DeploymentNotFoundError,
    DescriptorIOError,
    ExternalAPIError,
    LaunchError,
    ValidationError,
)
from deployer.core.events import ProgressChannel, ProgressEvent
from deployer.core.orchestrator import DeploymentOrchestrator
from deployer.core.session import DeploymentSessionManager

__all__ = [
    "CommandFailure",
    "CommandTimeoutError",
    "ConfigurationError",
    "ConflictError",
    "DeployerError",
    "DeploymentNotFoundError",
    "DescriptorIOError",
    "ExternalAPIError",
    "LaunchError",
    "ValidationError",
    "ProgressChannel",
    "ProgressEvent",
    "DeploymentOrchestrator",
    "DeploymentSessionManager",
]
