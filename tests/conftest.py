"""Pytest configuration and fixtures."""

from collections.abc import Callable, Sequence
from pathlib import Path

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sse_starlette import sse as sse_module

from deployer.config import Settings
from deployer.core.commands import CommandResult, format_command
from deployer.core.events import ProgressEvent
from deployer.core.exceptions import CommandFailure, ConflictError, ExternalAPIError
from deployer.core.orchestrator import DeploymentOrchestrator
from deployer.main import create_app
from deployer.services.platform import FlyPlatform


class RecordingSink:
    """Event sink that keeps everything it receives."""

    def __init__(self):
        self.events: list[ProgressEvent] = []

    async def emit(self, event: ProgressEvent) -> None:
        self.events.append(event)

    @property
    def messages(self) -> list[str]:
        return [e.message for e in self.events]


class FakeRunner:
    """Stands in for run_command and records every invocation."""

    def __init__(self, fail_when: Callable[[list[str]], bool] | None = None):
        self.fail_when = fail_when
        self.calls: list[list[str]] = []

    async def __call__(
        self,
        program: str,
        args: Sequence[str],
        sink,
        *,
        redact: Sequence[str] = (),
        timeout: float | None = None,
        log_context: dict[str, str] | None = None,
    ) -> CommandResult:
        args = list(args)
        self.calls.append([program, *args])
        command = format_command(program, args, redact)
        await sink.emit(ProgressEvent(message=f"Executing: {command}..."))
        if self.fail_when and self.fail_when(args):
            raise CommandFailure(command, 1, "simulated failure")
        return CommandResult(stdout="", stderr="", exit_code=0)

    def calls_to(self, *prefix: str) -> list[list[str]]:
        """Invocations whose arguments start with ``prefix``."""
        return [c for c in self.calls if c[1 : 1 + len(prefix)] == list(prefix)]


class FakeIdentity:
    """In-memory identity service."""

    def __init__(
        self,
        user_exists: bool = False,
        token_exists: bool = False,
        fail_create: bool = False,
    ):
        self.user_exists = user_exists
        self.token_exists = token_exists
        self.fail_create = fail_create
        self.created_users: list[str] = []
        self.lookups: list[str] = []
        self.tokens: list[tuple[str, str]] = []

    async def create_service_user(self, name: str) -> str:
        if self.fail_create:
            raise ExternalAPIError("Failed to create Humanitec service user. Status: 500", 500)
        if self.user_exists:
            raise ConflictError(f"Service user '{name}' already exists.")
        self.created_users.append(name)
        return "user-new"

    async def find_service_user(self, name: str) -> str:
        self.lookups.append(name)
        return "user-existing"

    async def issue_static_token(self, user_id: str, token_id: str, description: str) -> str:
        if self.token_exists:
            raise ConflictError(f"Token with ID '{token_id}' already exists for user '{user_id}'.")
        self.tokens.append((user_id, token_id))
        return "static-token-value"


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    """sse-starlette caches an exit event bound to the first event loop."""
    app_status = getattr(sse_module, "AppStatus", None)
    if app_status is not None and hasattr(app_status, "should_exit_event"):
        app_status.should_exit_event = None
    yield


@pytest.fixture
def descriptor_dir(tmp_path: Path) -> Path:
    path = tmp_path / "descriptors"
    path.mkdir()
    return path


@pytest.fixture
def settings(descriptor_dir: Path) -> Settings:
    """Settings isolated from the environment."""
    return Settings(
        app_env="development",
        humanitec_service_user_api_token="admin-token",
        humanitec_api_url="https://identity.test",
        humanitec_org_id="test-org",
        flyctl_path="flyctl",
        fly_org="test-org",
        fly_region="ams",
        deploy_image="example/chat:latest",
        app_base_domain="example.dev",
        descriptor_dir=str(descriptor_dir),
        subscriber_wait_seconds=0,
        minio_access_key_id="",
        minio_bucket="",
        minio_endpoint="",
        minio_secret_access_key="",
        log_file=None,
    )


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def identity() -> FakeIdentity:
    return FakeIdentity()


@pytest.fixture
def orchestrator(
    settings: Settings, identity: FakeIdentity, runner: FakeRunner
) -> DeploymentOrchestrator:
    return DeploymentOrchestrator(
        settings,
        identity=identity,
        platform=FlyPlatform(settings, runner=runner),
    )


@pytest.fixture
def app(settings: Settings, orchestrator: DeploymentOrchestrator) -> FastAPI:
    """Application wired with fake collaborators."""
    settings = settings.model_copy(update={"subscriber_wait_seconds": 5.0})
    return create_app(settings, orchestrator=orchestrator)


@pytest.fixture
async def client(app: FastAPI) -> AsyncClient:
    """Create an async test client for the app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await app.state.sessions.shutdown()
