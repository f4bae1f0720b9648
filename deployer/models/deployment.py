"""Deployment data models."""

from pydantic import BaseModel, ConfigDict, Field


class DeploymentRequest(BaseModel):
    """Caller-supplied deployment parameters.

    Accepts the form's camelCase names (``orgName``, ``geminiKey``) as well as
    the field names. Blank values are allowed here and rejected by the entry
    point, so a missing field and an empty one fail the same way.
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    org_name: str = Field(default="", alias="orgName", max_length=200)
    secret: str = Field(default="", alias="geminiKey", repr=False)

    def blank_fields(self) -> list[str]:
        """Names of required fields that are empty after trimming."""
        missing = []
        if not self.org_name:
            missing.append("orgName")
        if not self.secret:
            missing.append("geminiKey")
        return missing


class DeploymentAccepted(BaseModel):
    """Response returned once a deployment has been started."""

    model_config = ConfigDict(populate_by_name=True)

    deployment_id: str = Field(alias="deploymentId")


class DeploymentResult(BaseModel):
    """Outcome of one orchestration run."""

    deployment_id: str
    success: bool
    app_name: str = ""
    url: str = ""

    duration_ms: int = 0

    error: str | None = None
    cleaned_up: bool = False
