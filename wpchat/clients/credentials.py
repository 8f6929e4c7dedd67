"""
WordPress credential sourcing.

The streaming core never looks inside credentials: it forwards
``WordPressCredentials.to_payload()`` as an opaque blob in the request body.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Protocol

import httpx
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

HTTP_UNAUTHORIZED = 401


class WordPressCredentials(BaseModel):
    """Connection data for one WordPress site (application password auth)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    url: str
    username: str
    password: str = Field(repr=False)
    anthropic_api_key: str | None = Field(default=None, alias="anthropicApiKey", repr=False)

    def to_payload(self) -> dict[str, Any]:
        """Wire form expected by the agent backend."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ConnectionTestResult(BaseModel):
    success: bool
    error: str | None = None
    site_name: str | None = None


class CredentialProvider(Protocol):
    def get_credentials(self) -> WordPressCredentials | None: ...


def format_wordpress_url(url: str) -> str:
    """Trim, drop one trailing slash and default the scheme to https."""
    clean_url = url.strip()
    if clean_url.endswith("/"):
        clean_url = clean_url[:-1]
    if not clean_url.startswith(("http://", "https://")):
        clean_url = f"https://{clean_url}"
    return clean_url


class EnvCredentialProvider:
    """Reads credentials from the environment (and .env)."""

    def __init__(self, environ: dict[str, str] | None = None):
        self._environ = environ

    def get_credentials(self) -> WordPressCredentials | None:
        if self._environ is None:
            load_dotenv()
        env = self._environ if self._environ is not None else os.environ

        url = env.get("WORDPRESS_URL")
        username = env.get("WORDPRESS_USERNAME")
        password = env.get("WORDPRESS_APP_PASSWORD")
        if not (url and username and password):
            logger.debug("WordPress credentials not configured in environment")
            return None

        return WordPressCredentials(
            url=format_wordpress_url(url),
            username=username,
            password=password,
            anthropic_api_key=env.get("ANTHROPIC_API_KEY") or None,
        )


class StaticCredentialProvider:
    def __init__(self, credentials: WordPressCredentials | None):
        self._credentials = credentials

    def get_credentials(self) -> WordPressCredentials | None:
        return self._credentials


async def test_wordpress_connection(
    url: str,
    username: str,
    password: str,
    transport: httpx.AsyncBaseTransport | None = None,
    timeout: float = 15.0,
) -> ConnectionTestResult:
    """Check a site's REST index with basic auth and report its name."""
    clean_url = format_wordpress_url(url)
    try:
        async with httpx.AsyncClient(transport=transport, timeout=timeout) as client:
            response = await client.get(
                f"{clean_url}/wp-json",
                auth=(username, password),
                headers={"Content-Type": "application/json"},
            )
    except httpx.HTTPError as e:
        logger.error(f"WordPress connection test failed: {e}")
        return ConnectionTestResult(success=False, error=str(e) or "Connection failed")

    if not response.is_success:
        if response.status_code == HTTP_UNAUTHORIZED:
            return ConnectionTestResult(success=False, error="Invalid username or password")
        return ConnectionTestResult(success=False, error=f"HTTP {response.status_code}: {response.reason_phrase}")

    try:
        data = response.json()
    except ValueError as e:
        return ConnectionTestResult(success=False, error=f"Invalid response from site: {e}")

    site_name = data.get("name") if isinstance(data, dict) else None
    return ConnectionTestResult(success=True, site_name=site_name or "WordPress Site")


# keep pytest from collecting the helper as a test
test_wordpress_connection.__test__ = False  # type: ignore[attr-defined]
