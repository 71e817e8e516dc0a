import asyncio
import json
import logging
import shutil
import subprocess
from datetime import datetime
from pathlib import Path

import httpx

from collectors.decoder import parse_timestamp
from models import RemoteUsage

log = logging.getLogger(__name__)

USAGE_API_URL = "https://api.anthropic.com/api/oauth/usage"
KEYCHAIN_SERVICE = "Claude Code-credentials"
CREDENTIALS_PATH = Path.home() / ".claude" / ".credentials.json"


class RemoteUsageError(Exception):
    """Base class for failures of the live usage fetch."""


class NoCredentialsError(RemoteUsageError):
    def __init__(self, detail: str = "No Claude OAuth credentials found") -> None:
        super().__init__(detail)


class InvalidResponseError(RemoteUsageError):
    def __init__(self, detail: str = "Invalid response from Claude API") -> None:
        super().__init__(detail)


class HttpStatusError(RemoteUsageError):
    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"HTTP {status_code}: {body}")


def _token_from_blob(blob: str) -> str | None:
    try:
        creds = json.loads(blob)
    except json.JSONDecodeError:
        return None
    if not isinstance(creds, dict):
        return None
    oauth = creds.get("claudeAiOauth")
    token = oauth.get("accessToken") if isinstance(oauth, dict) else None
    return token if isinstance(token, str) and token else None


def _read_keychain() -> str | None:
    if shutil.which("security") is None:
        return None
    try:
        raw = subprocess.run(
            ["security", "find-generic-password", "-s", KEYCHAIN_SERVICE, "-w"],
            capture_output=True, text=True, timeout=5,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        log.debug("Keychain lookup failed: %s", exc)
        return None
    if raw.returncode != 0:
        log.debug("Keychain lookup failed: %s", raw.stderr.strip())
        return None
    return raw.stdout.strip()


def load_access_token(credentials_path: Path = CREDENTIALS_PATH) -> str:
    """OAuth access token from the credentials file, then the macOS keychain."""
    try:
        token = _token_from_blob(credentials_path.read_text())
    except OSError:
        token = None
    if token:
        return token

    blob = _read_keychain()
    token = _token_from_blob(blob) if blob else None
    if not token:
        raise NoCredentialsError()
    return token


def _window(body: dict, key: str) -> tuple[float | None, datetime | None]:
    entry = body.get(key)
    if entry is None:
        return None, None
    if not isinstance(entry, dict):
        raise InvalidResponseError(f"Unexpected '{key}' entry in usage response")
    utilization = entry.get("utilization")
    if utilization is not None and (isinstance(utilization, bool) or not isinstance(utilization, (int, float))):
        raise InvalidResponseError(f"Non-numeric utilization for '{key}'")
    resets = entry.get("resets_at")
    resets_at = parse_timestamp(resets) if isinstance(resets, str) else None
    return (float(utilization) if utilization is not None else None), resets_at


def parse_usage_response(body: object) -> RemoteUsage:
    if not isinstance(body, dict):
        raise InvalidResponseError()
    five_util, five_reset = _window(body, "five_hour")
    week_util, week_reset = _window(body, "seven_day")
    return RemoteUsage(
        five_hour_utilization=five_util,
        weekly_utilization=week_util,
        five_hour_resets_at=five_reset,
        weekly_resets_at=week_reset,
    )


async def fetch_usage(
    client: httpx.AsyncClient | None = None,
    *,
    credentials_path: Path = CREDENTIALS_PATH,
    url: str = USAGE_API_URL,
    timeout: float = 10.0,
) -> RemoteUsage:
    """Query Claude's live usage API for real utilization fractions."""
    # file read and keychain subprocess stay off the event loop
    token = await asyncio.to_thread(load_access_token, credentials_path)
    headers = {
        "Authorization": f"Bearer {token}",
        "anthropic-beta": "oauth-2025-04-20",
    }

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=timeout)
    try:
        resp = await client.get(url, headers=headers)
    except httpx.HTTPError as exc:
        raise InvalidResponseError(f"Usage API request failed: {exc}") from exc
    finally:
        if owns_client:
            await client.aclose()

    if resp.status_code != 200:
        raise HttpStatusError(resp.status_code, resp.text)
    try:
        body = resp.json()
    except ValueError as exc:
        raise InvalidResponseError() from exc
    return parse_usage_response(body)
