"""OAuth access tokens for Google Cloud endpoints using an authorized-user refresh token."""

from __future__ import annotations

import json
import os
from pathlib import Path

import httpx

from unified_stream.errors import ConfigurationError
from unified_stream.settings import ProviderSettings

TOKEN_URL = "https://oauth2.googleapis.com/token"
CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
_ADC_PATH = Path("~/.config/gcloud/application_default_credentials.json")


def _application_default_credentials() -> dict[str, str]:
    path = Path(os.environ.get("GOOGLE_APPLICATION_CREDENTIALS") or _ADC_PATH).expanduser()
    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Could not read Google credentials at {path}.") from exc
    if not isinstance(data, dict) or data.get("type") != "authorized_user":
        return {}
    return {key: str(value) for key, value in data.items()}


def refresh_credentials(settings: ProviderSettings) -> dict[str, str]:
    """Client id, secret and refresh token from settings, else from application default credentials."""
    if settings.oauth_client_id and settings.oauth_client_secret and settings.oauth_refresh_token:
        return {
            "client_id": settings.oauth_client_id,
            "client_secret": settings.oauth_client_secret,
            "refresh_token": settings.oauth_refresh_token,
        }
    adc = _application_default_credentials()
    if adc.get("client_id") and adc.get("client_secret") and adc.get("refresh_token"):
        return {key: adc[key] for key in ("client_id", "client_secret", "refresh_token")}
    raise ConfigurationError("Google API failed to generate a key: no OAuth credentials found.")


async def fetch_google_access_token(
    settings: ProviderSettings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """Exchange the refresh token for a short-lived access token.

    A fresh token is fetched per request; tokens are not cached.
    """
    payload = {
        **refresh_credentials(settings),
        "grant_type": "refresh_token",
        "scope": CLOUD_PLATFORM_SCOPE,
    }
    async with httpx.AsyncClient(timeout=15, transport=transport) as client:
        response = await client.post(TOKEN_URL, data=payload)
    if response.status_code >= 400:
        raise ConfigurationError(
            f"Google API failed to generate a key (status {response.status_code})."
        )
    token = response.json().get("access_token")
    if not isinstance(token, str) or not token:
        raise ConfigurationError("Google API failed to generate a key.")
    return token
