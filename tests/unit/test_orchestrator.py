"""Unit tests for the deployment orchestrator."""

import random
import re
from pathlib import Path

import pytest

from deployer.core.orchestrator import DeploymentOrchestrator, derive_app_name
from deployer.models.deployment import DeploymentRequest
from deployer.services.platform import FlyPlatform

NAME_PATTERN = re.compile(r"^acme-inc-\d{4}$")


def is_secret_set(key: str):
    def check(args: list[str]) -> bool:
        return args[:2] == ["secrets", "set"] and args[-1].startswith(f"{key}=")

    return check


class TestDeriveAppName:
    """Tests for derive_app_name."""

    def test_sanitizes_and_suffixes(self):
        name = derive_app_name("Acme Inc!")

        assert NAME_PATTERN.match(name)
        assert len(name) <= 45

    def test_long_names_are_bounded(self):
        name = derive_app_name("The Very Long Organization Name Of Acme Incorporated Worldwide")

        base, suffix = name.rsplit("-", 1)
        assert len(base) <= 40
        assert not base.endswith("-")
        assert suffix.isdigit() and len(suffix) == 4
        assert len(name) <= 45

    def test_only_valid_characters(self):
        name = derive_app_name("  Ünïcode & Co. -- (Berlin)  ")

        assert re.fullmatch(r"[a-z0-9]+(-[a-z0-9]+)*-\d{4}", name)

    def test_empty_after_sanitizing_falls_back(self):
        assert re.fullmatch(r"app-\d{4}", derive_app_name("!!!"))

    def test_suffix_range(self):
        rng = random.Random(7)
        suffixes = {int(derive_app_name("acme", rng).rsplit("-", 1)[1]) for _ in range(200)}

        assert min(suffixes) >= 1000
        assert max(suffixes) <= 9999


class TestDeploymentOrchestrator:
    """Tests for DeploymentOrchestrator."""

    @pytest.fixture
    def request_data(self) -> DeploymentRequest:
        return DeploymentRequest(org_name="Acme Inc!", secret="k")

    @pytest.mark.asyncio
    async def test_successful_deployment(
        self,
        orchestrator: DeploymentOrchestrator,
        request_data: DeploymentRequest,
        runner,
        identity,
        sink,
        descriptor_dir: Path,
    ):
        result = await orchestrator.run("dep-1", request_data, sink)

        assert result.success is True
        assert NAME_PATTERN.match(result.app_name)

        final = sink.events[-1]
        assert final.is_complete is True
        assert final.is_error is False
        assert final.data == {"appUrl": f"https://{result.app_name}.example.dev"}
        assert result.url == final.data["appUrl"]
        assert sum(e.is_complete for e in sink.events) == 1

        assert identity.created_users == [f"canyon-chat-fly-{result.app_name}"]
        assert identity.tokens == [("user-new", f"canyon-chat-fly-token-{result.app_name}")]

        assert runner.calls_to("apps", "create") == [
            ["flyctl", "apps", "create", result.app_name, "--org", "test-org"]
        ]
        secret_keys = [c[-1].split("=", 1)[0] for c in runner.calls_to("secrets", "set")]
        assert secret_keys == ["GOOGLE_API_KEY", "HUMANITEC_TOKEN", "DEFAULT_MODEL", "ENABLE_MCP", "MINIO_USE_SSL"]
        deploy_call = runner.calls_to("deploy")[0]
        assert str(descriptor_dir / f"fly_dep-1_{result.app_name}.toml") in deploy_call
        assert runner.calls_to("apps", "destroy") == []

        # Descriptor is removed once the run ends
        assert list(descriptor_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_empty_secrets_are_skipped(
        self, orchestrator: DeploymentOrchestrator, request_data, sink
    ):
        await orchestrator.run("dep-1", request_data, sink)

        assert "Skipping secret MINIO_BUCKET as value is empty." in sink.messages
        assert not any(e.is_error for e in sink.events)

    @pytest.mark.asyncio
    async def test_secrets_never_reach_progress(
        self, orchestrator: DeploymentOrchestrator, sink
    ):
        await orchestrator.run("dep-1", DeploymentRequest(org_name="Acme", secret="top-secret-key"), sink)

        assert all("top-secret-key" not in m for m in sink.messages)
        assert all("static-token-value" not in m for m in sink.messages)

    @pytest.mark.asyncio
    async def test_short_secret_does_not_garble_progress(
        self, orchestrator: DeploymentOrchestrator, request_data, sink
    ):
        result = await orchestrator.run("dep-1", request_data, sink)
        app = result.app_name

        assert f"Generated Fly app name: {app}" in sink.messages
        assert f"Executing: flyctl secrets set -a {app} GOOGLE_API_KEY=***..." in sink.messages
        assert f"Executing: flyctl secrets set -a {app} HUMANITEC_TOKEN=***..." in sink.messages
        # Plain configuration values are not treated as secrets
        assert f"Executing: flyctl secrets set -a {app} ENABLE_MCP=true..." in sink.messages
        assert f"Executing: flyctl secrets set -a {app} MINIO_USE_SSL=true..." in sink.messages

    @pytest.mark.asyncio
    async def test_existing_service_user_is_looked_up(
        self, orchestrator: DeploymentOrchestrator, request_data, identity, sink
    ):
        identity.user_exists = True

        result = await orchestrator.run("dep-1", request_data, sink)

        assert result.success is True
        assert identity.created_users == []
        assert identity.lookups == [f"canyon-chat-fly-{result.app_name}"]
        assert identity.tokens[0][0] == "user-existing"
        assert any("already exists. Fetching ID" in m for m in sink.messages)

    @pytest.mark.asyncio
    async def test_identity_failure_ends_without_cleanup(
        self, orchestrator: DeploymentOrchestrator, request_data, identity, runner, sink
    ):
        identity.fail_create = True

        result = await orchestrator.run("dep-1", request_data, sink)

        assert result.success is False
        assert runner.calls == []
        assert sink.events[-1].is_complete and sink.events[-1].is_error

    @pytest.mark.asyncio
    async def test_token_conflict_is_fatal(
        self, orchestrator: DeploymentOrchestrator, request_data, identity, runner, sink
    ):
        identity.token_exists = True

        result = await orchestrator.run("dep-1", request_data, sink)

        assert result.success is False
        assert "already exists" in result.error
        assert runner.calls == []
        assert sum(e.is_complete for e in sink.events) == 1

    @pytest.mark.asyncio
    async def test_failed_app_creation_is_not_destroyed(
        self, orchestrator: DeploymentOrchestrator, request_data, runner, sink
    ):
        runner.fail_when = lambda args: args[:2] == ["apps", "create"]

        result = await orchestrator.run("dep-1", request_data, sink)

        assert result.success is False
        assert result.cleaned_up is False
        assert runner.calls_to("apps", "destroy") == []
        assert sink.events[-1].is_complete and sink.events[-1].is_error

    @pytest.mark.asyncio
    async def test_third_secret_failure_destroys_app(
        self, orchestrator: DeploymentOrchestrator, request_data, runner, sink
    ):
        runner.fail_when = is_secret_set("DEFAULT_MODEL")

        result = await orchestrator.run("dep-1", request_data, sink)

        assert result.success is False
        assert result.cleaned_up is True
        assert "Secret GOOGLE_API_KEY set." in sink.messages
        assert "Secret HUMANITEC_TOKEN set." in sink.messages
        assert "Secret DEFAULT_MODEL set." not in sink.messages

        errors = [e for e in sink.events if e.is_error]
        assert "DEFAULT_MODEL" in errors[0].message
        assert runner.calls_to("apps", "destroy") == [
            ["flyctl", "apps", "destroy", result.app_name, "--yes"]
        ]
        assert runner.calls_to("deploy") == []

        final = sink.events[-1]
        assert final.is_complete is True
        assert final.is_error is True
        assert final.data is None
        assert sum(e.is_complete for e in sink.events) == 1

    @pytest.mark.asyncio
    async def test_deploy_failure_cleans_up_and_removes_descriptor(
        self, orchestrator: DeploymentOrchestrator, request_data, runner, sink, descriptor_dir: Path
    ):
        runner.fail_when = lambda args: args[0] == "deploy"

        result = await orchestrator.run("dep-1", request_data, sink)

        assert result.success is False
        assert len(runner.calls_to("apps", "destroy")) == 1
        assert f"Cleaned up failed app {result.app_name}." in sink.messages
        assert list(descriptor_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_cleanup_failure_is_reported(
        self, orchestrator: DeploymentOrchestrator, request_data, runner, sink, descriptor_dir: Path
    ):
        runner.fail_when = lambda args: args[0] == "deploy" or args[:2] == ["apps", "destroy"]

        result = await orchestrator.run("dep-1", request_data, sink)

        assert result.success is False
        assert result.cleaned_up is False
        errors = [e.message for e in sink.events if e.is_error]
        assert any(m.startswith(f"Failed to cleanup app {result.app_name}") for m in errors)
        assert sink.events[-1].is_complete and sink.events[-1].is_error
        assert sum(e.is_complete for e in sink.events) == 1
        assert list(descriptor_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_descriptor_write_failure_triggers_cleanup(
        self, settings, identity, runner, request_data, sink, tmp_path: Path
    ):
        settings = settings.model_copy(update={"descriptor_dir": str(tmp_path / "missing")})
        orchestrator = DeploymentOrchestrator(
            settings, identity=identity, platform=FlyPlatform(settings, runner=runner)
        )

        result = await orchestrator.run("dep-1", request_data, sink)

        assert result.success is False
        assert "deployment descriptor" in result.error
        assert len(runner.calls_to("apps", "destroy")) == 1
        assert runner.calls_to("deploy") == []
