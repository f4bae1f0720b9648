"""Custom exceptions for the deployer."""

from typing import Any


class DeployerError(Exception):
    """Base exception for the deployer."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(DeployerError):
    """Deployment request failed validation."""

    pass


class DeploymentNotFoundError(DeployerError):
    """No live deployment for the given identifier."""

    def __init__(self, deployment_id: str):
        super().__init__(
            f"Deployment not found: {deployment_id}",
            {"deployment_id": deployment_id},
        )


class ConfigurationError(DeployerError):
    """Required configuration is missing."""

    pass


class LaunchError(DeployerError):
    """External command could not be started."""

    def __init__(self, command: str, reason: str):
        super().__init__(
            f'Failed to start command "{command}": {reason}',
            {"command": command},
        )
        self.command = command


class CommandFailure(DeployerError):
    """External command exited with a non-zero status."""

    def __init__(
        self,
        command: str,
        exit_code: int | None,
        stderr: str,
        message: str | None = None,
    ):
        if message is None:
            message = (
                f'Command "{command}" failed with exit code {exit_code}. '
                f"Stderr: {stderr.strip() or 'None'}"
            )
        super().__init__(message, {"command": command, "exit_code": exit_code})
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr


class CommandTimeoutError(CommandFailure):
    """External command exceeded the configured timeout and was killed."""

    def __init__(self, command: str, timeout: float, stderr: str):
        super().__init__(
            command,
            None,
            stderr,
            message=f'Command "{command}" timed out after {timeout:g}s',
        )
        self.details["timeout"] = timeout


class ExternalAPIError(DeployerError):
    """Identity or platform API returned an error or an unexpected shape."""

    def __init__(self, message: str, status_code: int | None = None):
        details = {}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, details)
        self.status_code = status_code


class ConflictError(ExternalAPIError):
    """Resource already exists and cannot be reused."""

    def __init__(self, message: str):
        super().__init__(message, status_code=409)


class DescriptorIOError(DeployerError):
    """Writing or removing the deployment descriptor failed."""

    def __init__(self, path: str, reason: str):
        super().__init__(
            f"Failed to write deployment descriptor {path}: {reason}",
            {"path": path},
        )
        self.path = path
