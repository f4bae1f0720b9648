"""Data models for the deployer."""

from deployer.models.deployment import (
    DeploymentAccepted,
    DeploymentRequest,
    DeploymentResult,
)

__all__ = [
    "DeploymentAccepted",
    "DeploymentRequest",
    "DeploymentResult",
]
