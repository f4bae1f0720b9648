"""Unit tests for data models."""

import pydantic
import pytest

from deployer.models.deployment import DeploymentAccepted, DeploymentRequest


class TestDeploymentRequest:
    """Tests for DeploymentRequest."""

    def test_accepts_form_names(self):
        request = DeploymentRequest.model_validate({"orgName": "Acme", "geminiKey": "k"})

        assert request.org_name == "Acme"
        assert request.secret == "k"

    def test_accepts_field_names(self):
        request = DeploymentRequest(org_name="Acme", secret="k")

        assert request.blank_fields() == []

    def test_strips_whitespace(self):
        request = DeploymentRequest.model_validate({"orgName": "  Acme ", "geminiKey": " k "})

        assert request.org_name == "Acme"
        assert request.secret == "k"

    def test_blank_fields(self):
        request = DeploymentRequest.model_validate({"orgName": "   "})

        assert request.blank_fields() == ["orgName", "geminiKey"]

    def test_is_immutable(self):
        request = DeploymentRequest(org_name="Acme", secret="k")

        with pytest.raises(pydantic.ValidationError):
            request.org_name = "Other"

    def test_secret_hidden_from_repr(self):
        request = DeploymentRequest(org_name="Acme", secret="very-secret")

        assert "very-secret" not in repr(request)


def test_deployment_accepted_serializes_camel_case():
    accepted = DeploymentAccepted(deployment_id="abc")

    assert accepted.model_dump(by_alias=True) == {"deploymentId": "abc"}
