"""Client for the Humanitec identity API.

Creates the service user and static token a deployed app uses to talk back
to the platform.
"""

from typing import Any

import httpx

from deployer.config import Settings
from deployer.core.exceptions import ConfigurationError, ConflictError, ExternalAPIError
from deployer.utils.logging import get_logger

logger = get_logger(__name__)


class IdentityService:
    """Service-user and token management against the identity API."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.base_url = settings.humanitec_api_url.rstrip("/")
        self.org_id = settings.humanitec_org_id

    def _headers(self) -> dict[str, str]:
        token = self.settings.humanitec_service_user_api_token
        if not token:
            raise ConfigurationError(
                "Missing HUMANITEC_SERVICE_USER_API_TOKEN in environment variables."
            )
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        headers = self._headers()
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.settings.http_timeout_seconds,
            ) as client:
                return await client.request(
                    method, path, headers=headers, json=json, params=params
                )
        except httpx.HTTPError as e:
            logger.error("identity.request_failed", method=method, path=path, error=str(e))
            raise ExternalAPIError(f"{method} {path} failed: {e}") from e

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ExternalAPIError(
                f"Unexpected non-JSON response from identity API: {response.text[:200]}",
                status_code=response.status_code,
            ) from e

    async def create_service_user(self, name: str) -> str:
        """Create a service user and return its id.

        Raises:
            ConflictError: A user with this name already exists
            ExternalAPIError: Any other failure
        """
        response = await self._request(
            "POST",
            f"/orgs/{self.org_id}/users",
            json={
                "name": name,
                "role": self.settings.service_user_role,
                "type": "service",
            },
        )

        if response.status_code == httpx.codes.CONFLICT:
            raise ConflictError(f"Service user '{name}' already exists.")
        if response.is_error:
            raise ExternalAPIError(
                f"Failed to create Humanitec service user. "
                f"Status: {response.status_code}, Body: {response.text}",
                status_code=response.status_code,
            )

        body = self._json(response)
        if not isinstance(body, dict) or not body.get("id"):
            raise ExternalAPIError(
                "Failed to parse service user ID from Humanitec response.",
                status_code=response.status_code,
            )

        logger.info("identity.user_created", name=name, user_id=body["id"])
        return body["id"]

    async def find_service_user(self, name: str) -> str:
        """Look up an existing service user by name and return its id."""
        response = await self._request(
            "GET",
            f"/orgs/{self.org_id}/users",
            params={"name": name},
        )

        if response.is_error:
            raise ExternalAPIError(
                f"Failed to find existing service user '{name}'. "
                f"Status: {response.status_code}",
                status_code=response.status_code,
            )

        users = self._json(response)
        first = users[0] if isinstance(users, list) and users else None
        if not isinstance(first, dict) or not first.get("id"):
            raise ExternalAPIError(
                f"Failed to find ID for existing service user '{name}'."
            )

        logger.info("identity.user_found", name=name, user_id=first["id"])
        return first["id"]

    async def issue_static_token(
        self, user_id: str, token_id: str, description: str
    ) -> str:
        """Issue a static token for ``user_id`` and return its secret.

        Static tokens can only be read at creation time, so an existing token
        with the same id is a hard failure.

        Raises:
            ConflictError: A token with ``token_id`` already exists
            ExternalAPIError: Any other failure
        """
        response = await self._request(
            "POST",
            f"/users/{user_id}/tokens",
            json={
                "id": token_id,
                "description": description,
                "expires_at": self.settings.token_expires_at,
                "type": "static",
            },
        )

        if response.status_code == httpx.codes.CONFLICT:
            raise ConflictError(
                f"Token with ID '{token_id}' already exists for user '{user_id}'. "
                "Cannot retrieve existing static token. Please delete it manually "
                "in Humanitec if you want to proceed."
            )
        if response.is_error:
            raise ExternalAPIError(
                f"Failed to generate Humanitec API token. "
                f"Status: {response.status_code}, Body: {response.text}",
                status_code=response.status_code,
            )

        body = self._json(response)
        if not isinstance(body, dict) or not body.get("token"):
            raise ExternalAPIError(
                "Failed to parse generated token from Humanitec response.",
                status_code=response.status_code,
            )

        logger.info("identity.token_issued", user_id=user_id, token_id=token_id)
        return body["token"]
