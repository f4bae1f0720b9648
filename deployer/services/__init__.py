"""External collaborators used by the orchestrator."""

from deployer.services.identity import IdentityService
from deployer.services.platform import FlyPlatform

__all__ = [
    "FlyPlatform",
    "IdentityService",
]
