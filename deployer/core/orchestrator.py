"""Deployment Orchestrator.

Provisions an identity for a new chat app, creates it on the platform,
injects its secrets and deploys the image, reporting every step to the
deployment's progress stream.
"""

import asyncio
import random
import re
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path

from deployer.config import Settings
from deployer.core.events import EventSink, ProgressReporter
from deployer.core.exceptions import ConflictError, DeployerError, DescriptorIOError
from deployer.models.deployment import DeploymentRequest, DeploymentResult
from deployer.services.identity import IdentityService
from deployer.services.platform import FlyPlatform
from deployer.utils.logging import get_logger

MAX_NAME_LENGTH = 40
_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9-]+")
_REPEATED_HYPHENS = re.compile(r"-{2,}")

# Deployment defaults that are configuration, not credentials
PLAIN_APP_SETTINGS = frozenset(
    {"DEFAULT_MODEL", "ENABLE_MCP", "MINIO_BUCKET", "MINIO_ENDPOINT", "MINIO_USE_SSL"}
)


def derive_app_name(org_name: str, rng: random.Random | None = None) -> str:
    """Build a platform app name from a free-text organization name.

    The result is lowercase alphanumerics and hyphens, at most
    ``MAX_NAME_LENGTH`` characters before a random 4-digit suffix. The suffix
    makes collisions unlikely, not impossible.
    """
    rng = rng or random
    base = _INVALID_NAME_CHARS.sub("-", org_name.lower())
    base = _REPEATED_HYPHENS.sub("-", base).strip("-")
    base = base[:MAX_NAME_LENGTH].rstrip("-") or "app"
    return f"{base}-{rng.randint(1000, 9999)}"


@dataclass
class DeploymentContext:
    """State of one orchestration run.

    Cleanup only touches resources recorded here.
    """

    deployment_id: str
    app_name: str = ""
    service_user_id: str | None = None
    token: str | None = field(default=None, repr=False)
    created_app: str | None = None
    descriptor_path: Path | None = None


class DeploymentOrchestrator:
    """Runs the provisioning sequence for one deployment at a time.

    Steps:
    1. derive the app name
    2. create or find the service user
    3. issue its static token
    4. create the platform app
    5. set the app's secrets
    6. write the deployment descriptor
    7. deploy the image
    8. report the public URL
    """

    def __init__(
        self,
        settings: Settings,
        identity: IdentityService | None = None,
        platform: FlyPlatform | None = None,
        rng: random.Random | None = None,
    ):
        self.settings = settings
        self.identity = identity or IdentityService(settings)
        self.platform = platform or FlyPlatform(settings)
        self.rng = rng or random.Random()
        self.logger = get_logger("orchestrator")

    async def run(
        self,
        deployment_id: str,
        request: DeploymentRequest,
        sink: EventSink,
    ) -> DeploymentResult:
        """Run the whole sequence and report through ``sink``.

        Never raises for deployment failures: they are reported as error
        events followed by the completion event, and returned in the result.
        """
        progress = ProgressReporter(sink)
        context = DeploymentContext(deployment_id=deployment_id)
        log = self.logger.bind(deployment_id=deployment_id)
        start_time = time.time()

        log.info("orchestrator.run.started")

        try:
            await self._derive_name(context, request, progress)
            await self._provision_identity(context, progress)
            await self._issue_credential(context, progress)
            await self._create_app(context, progress)
            await self._inject_secrets(context, request, progress)
            await self._write_descriptor(context, progress)
            await self._deploy_image(context, progress)

            url = self.settings.app_url(context.app_name)
            await progress.complete(
                f"Deployment successful! App should be available shortly at: {url}",
                data={"appUrl": url},
            )
            log.info("orchestrator.run.completed", app_name=context.app_name, url=url)
            return DeploymentResult(
                deployment_id=deployment_id,
                success=True,
                app_name=context.app_name,
                url=url,
                duration_ms=int((time.time() - start_time) * 1000),
            )

        except Exception as e:
            if isinstance(e, DeployerError):
                log.error("orchestrator.run.failed", error=str(e), app_name=context.app_name)
            else:
                log.exception("orchestrator.run.crashed", app_name=context.app_name)

            cleaned_up = await self._handle_failure(context, e, progress)
            return DeploymentResult(
                deployment_id=deployment_id,
                success=False,
                app_name=context.app_name,
                error=str(e),
                cleaned_up=cleaned_up,
                duration_ms=int((time.time() - start_time) * 1000),
            )

        finally:
            await self._remove_descriptor(context)

    async def _derive_name(
        self,
        context: DeploymentContext,
        request: DeploymentRequest,
        progress: ProgressReporter,
    ) -> None:
        await progress.info("Generating unique application name...")
        context.app_name = derive_app_name(request.org_name, self.rng)
        await progress.info(f"Generated Fly app name: {context.app_name}")
        self.logger.info(
            "orchestrator.name_derived",
            deployment_id=context.deployment_id,
            app_name=context.app_name,
        )

    async def _provision_identity(
        self, context: DeploymentContext, progress: ProgressReporter
    ) -> None:
        user_name = f"{self.settings.service_user_prefix}-{context.app_name}"

        await progress.info("Setting up Humanitec service user and token...")
        await progress.info(f"Creating/finding Humanitec service user: {user_name}...")

        try:
            context.service_user_id = await self.identity.create_service_user(user_name)
            await progress.info(
                f"Successfully created Humanitec service user. ID: {context.service_user_id}"
            )
        except ConflictError:
            self.logger.warning(
                "orchestrator.service_user_exists",
                deployment_id=context.deployment_id,
                user_name=user_name,
            )
            await progress.info(
                f"Service user '{user_name}' already exists. Fetching ID..."
            )
            context.service_user_id = await self.identity.find_service_user(user_name)
            await progress.info(
                f"Found existing service user ID: {context.service_user_id}"
            )

    async def _issue_credential(
        self, context: DeploymentContext, progress: ProgressReporter
    ) -> None:
        token_id = f"{self.settings.service_user_prefix}-token-{context.app_name}"
        description = f"Token for Canyon Chat Fly deployment ({context.app_name})"

        await progress.info(
            f"Generating API token for user ID: {context.service_user_id}..."
        )
        # A conflict here is final: static tokens cannot be read back.
        context.token = await self.identity.issue_static_token(
            context.service_user_id, token_id, description
        )
        await progress.info("Successfully generated Humanitec API token.")
        await progress.info("Humanitec setup complete.")

    async def _create_app(
        self, context: DeploymentContext, progress: ProgressReporter
    ) -> None:
        await progress.info(
            f"Creating Fly app '{context.app_name}' in region '{self.settings.fly_region}'..."
        )
        await self.platform.create_app(context.app_name, progress)
        # Recorded only once it exists, so a failed create is never destroyed.
        context.created_app = context.app_name
        await progress.info(f"Fly app '{context.app_name}' created.")

    def _app_secrets(
        self, context: DeploymentContext, request: DeploymentRequest
    ) -> dict[str, str]:
        return {
            "GOOGLE_API_KEY": request.secret,
            "HUMANITEC_TOKEN": context.token or "",
            **self.settings.fixed_app_secrets(),
        }

    async def _inject_secrets(
        self,
        context: DeploymentContext,
        request: DeploymentRequest,
        progress: ProgressReporter,
    ) -> None:
        await progress.info("Setting secrets in Fly app (one by one)...")

        for key, value in self._app_secrets(context, request).items():
            if not value:
                await progress.info(f"Skipping secret {key} as value is empty.")
                self.logger.warning(
                    "orchestrator.secret_skipped",
                    deployment_id=context.deployment_id,
                    secret=key,
                )
                continue

            await progress.info(f"Setting secret {key}...")
            await self.platform.set_secret(
                context.created_app,
                key,
                value,
                progress,
                sensitive=key not in PLAIN_APP_SETTINGS,
            )
            await progress.info(f"Secret {key} set.")

        await progress.info("All secrets processed.")

    async def _write_descriptor(
        self, context: DeploymentContext, progress: ProgressReporter
    ) -> None:
        directory = Path(self.settings.descriptor_dir or tempfile.gettempdir())
        path = directory / f"fly_{context.deployment_id}_{context.app_name}.toml"
        content = self.platform.render_descriptor(context.app_name)

        await progress.info(f"Writing temporary fly.toml to {path}...")
        context.descriptor_path = path
        try:
            await asyncio.to_thread(path.write_text, content, encoding="utf-8")
        except OSError as e:
            raise DescriptorIOError(str(path), str(e)) from e

    async def _deploy_image(
        self, context: DeploymentContext, progress: ProgressReporter
    ) -> None:
        await progress.info(
            f"Deploying image '{self.settings.deploy_image}' to Fly app '{context.created_app}'..."
        )
        await self.platform.deploy(context.created_app, context.descriptor_path, progress)
        await progress.info("Fly deployment command initiated.")

    async def _handle_failure(
        self,
        context: DeploymentContext,
        error: Exception,
        progress: ProgressReporter,
    ) -> bool:
        """Report the failure, destroy the app if one was created, close the stream.

        Returns True when a created app was destroyed.
        """
        await progress.error(f"Error: {error}")

        cleaned_up = False
        if context.created_app:
            app_name = context.created_app
            await progress.info(
                f"Attempting to clean up failed deployment for app {app_name}..."
            )
            try:
                await self.platform.destroy_app(app_name, progress)
                cleaned_up = True
                await progress.info(f"Cleaned up failed app {app_name}.")
                self.logger.info(
                    "orchestrator.cleanup.completed",
                    deployment_id=context.deployment_id,
                    app_name=app_name,
                )
            except Exception as cleanup_error:
                self.logger.error(
                    "orchestrator.cleanup.failed",
                    deployment_id=context.deployment_id,
                    app_name=app_name,
                    error=str(cleanup_error),
                )
                await progress.error(
                    f"Failed to cleanup app {app_name}: {cleanup_error}"
                )

        await progress.complete(f"Deployment failed: {error}", is_error=True)
        return cleaned_up

    async def _remove_descriptor(self, context: DeploymentContext) -> None:
        path = context.descriptor_path
        if path is None:
            return

        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
            self.logger.info(
                "orchestrator.descriptor_removed",
                deployment_id=context.deployment_id,
                path=str(path),
            )
        except OSError as e:
            self.logger.warning(
                "orchestrator.descriptor_remove_failed",
                deployment_id=context.deployment_id,
                path=str(path),
                error=str(e),
            )
