"""Fly.io platform operations driven through flyctl."""

from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path

from deployer.config import Settings
from deployer.core.commands import CommandResult, run_command
from deployer.core.events import EventSink

Runner = Callable[..., Awaitable[CommandResult]]


DESCRIPTOR_TEMPLATE = """\
app = "{app_name}"
primary_region = "{region}"

[build]
  image = "{image}"

[http_service]
  internal_port = {port}
  force_https = true
  auto_stop_machines = true
  auto_start_machines = true
  min_machines_running = 0
"""


class FlyPlatform:
    """Creates, configures, deploys and destroys Fly apps.

    Every operation is a single flyctl invocation whose output is streamed
    into the given sink.
    """

    def __init__(self, settings: Settings, runner: Runner = run_command):
        self.settings = settings
        self.runner = runner

    async def _flyctl(
        self,
        args: Sequence[str],
        sink: EventSink,
        *,
        redact: Sequence[str] = (),
        log_context: dict[str, str] | None = None,
    ) -> CommandResult:
        return await self.runner(
            self.settings.flyctl_path,
            list(args),
            sink,
            redact=redact,
            timeout=self.settings.command_timeout_seconds,
            log_context=log_context,
        )

    async def create_app(self, app_name: str, sink: EventSink) -> CommandResult:
        return await self._flyctl(
            ["apps", "create", app_name, "--org", self.settings.fly_org],
            sink,
            log_context={"app_name": app_name},
        )

    async def set_secret(
        self,
        app_name: str,
        key: str,
        value: str,
        sink: EventSink,
        sensitive: bool = True,
    ) -> CommandResult:
        """Set one secret.

        A sensitive value never appears in progress or logs; plain
        configuration values are shown as given.
        """
        return await self._flyctl(
            ["secrets", "set", "-a", app_name, f"{key}={value}"],
            sink,
            redact=[value] if sensitive else (),
            log_context={"app_name": app_name, "secret": key},
        )

    async def deploy(
        self, app_name: str, descriptor_path: Path, sink: EventSink
    ) -> CommandResult:
        # --detach returns once the release is accepted
        return await self._flyctl(
            [
                "deploy",
                "-a",
                app_name,
                "-c",
                str(descriptor_path),
                "--image",
                self.settings.deploy_image,
                "--ha=false",
                "--detach",
            ],
            sink,
            log_context={"app_name": app_name},
        )

    async def destroy_app(self, app_name: str, sink: EventSink) -> CommandResult:
        return await self._flyctl(
            ["apps", "destroy", app_name, "--yes"],
            sink,
            log_context={"app_name": app_name},
        )

    def render_descriptor(self, app_name: str) -> str:
        """Render the fly.toml used to deploy ``app_name``."""
        return DESCRIPTOR_TEMPLATE.format(
            app_name=app_name,
            region=self.settings.fly_region,
            image=self.settings.deploy_image,
            port=self.settings.app_internal_port,
        )
