#!/usr/bin/env python3
"""Tests for credential sourcing and the WordPress connection check."""

from __future__ import annotations

import asyncio

import httpx

from wpchat.clients.credentials import (
    EnvCredentialProvider,
    WordPressCredentials,
    format_wordpress_url,
)
from wpchat.clients.credentials import test_wordpress_connection as check_connection


def test_format_wordpress_url():
    assert format_wordpress_url("  example.com/ ") == "https://example.com"
    assert format_wordpress_url("http://local.test") == "http://local.test"
    assert format_wordpress_url("https://example.com/blog/") == "https://example.com/blog"


def test_env_provider_reads_credentials():
    provider = EnvCredentialProvider(
        {
            "WORDPRESS_URL": "example.com/",
            "WORDPRESS_USERNAME": "admin",
            "WORDPRESS_APP_PASSWORD": "abcd efgh",
            "ANTHROPIC_API_KEY": "sk-test",
        }
    )
    credentials = provider.get_credentials()
    assert credentials is not None
    assert credentials.url == "https://example.com"
    assert credentials.to_payload() == {
        "url": "https://example.com",
        "username": "admin",
        "password": "abcd efgh",
        "anthropicApiKey": "sk-test",
    }


def test_env_provider_incomplete_environment():
    assert EnvCredentialProvider({"WORDPRESS_URL": "example.com"}).get_credentials() is None


def test_payload_omits_missing_api_key():
    credentials = WordPressCredentials(url="https://example.com", username="admin", password="pw")
    assert "anthropicApiKey" not in credentials.to_payload()
    assert "pw" not in repr(credentials)


def _run_check(handler):
    return asyncio.run(check_connection("example.com", "admin", "pw", transport=httpx.MockTransport(handler)))


def test_connection_check_success():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"name": "My Blog"})

    result = _run_check(handler)
    assert result.success
    assert result.site_name == "My Blog"
    assert str(seen[0].url) == "https://example.com/wp-json"
    assert seen[0].headers["authorization"].startswith("Basic ")


def test_connection_check_failures():
    result = _run_check(lambda request: httpx.Response(401))
    assert not result.success
    assert result.error == "Invalid username or password"

    result = _run_check(lambda request: httpx.Response(404))
    assert result.error == "HTTP 404: Not Found"

    result = _run_check(lambda request: httpx.Response(200, json=["not", "an", "object"]))
    assert result.success
    assert result.site_name == "WordPress Site"


if __name__ == "__main__":
    test_format_wordpress_url()
    test_env_provider_reads_credentials()
    test_env_provider_incomplete_environment()
    test_payload_omits_missing_api_key()
    test_connection_check_success()
    test_connection_check_failures()
    print("✅ credentials tests passed")
