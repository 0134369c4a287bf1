# DHIS2 SQL View MCP Server
# File: auth.py
# Version: v1

"""Caller-supplied session credentials for DHIS2 API calls."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional
import base64

from .config import Dhis2Config


@dataclass(frozen=True)
class Dhis2Session:
    """Base endpoint plus a ready-to-send Authorization header value.

    The engine never stores identity of its own: a session is handed to the
    client on every call. DHIS2 accepts HTTP Basic credentials and personal
    access tokens (``ApiToken <token>``).
    """

    base_url: str
    authorization: Optional[str] = None

    @classmethod
    def basic(cls, base_url: str, username: str, password: str) -> "Dhis2Session":
        raw_credentials = f"{username}:{password}"
        basic_token = base64.b64encode(raw_credentials.encode("utf-8")).decode("ascii")
        return cls(base_url=base_url, authorization=f"Basic {basic_token}")

    @classmethod
    def api_token(cls, base_url: str, token: str) -> "Dhis2Session":
        return cls(base_url=base_url, authorization=f"ApiToken {token}")

    @classmethod
    def from_config(cls, config: Dhis2Config) -> "Dhis2Session":
        """Build a session from env-driven configuration.

        A personal access token wins over username/password when both are set.
        """
        if not config.base_url:
            raise RuntimeError(
                "DHIS2_BASE_URL is not set. "
                "Please configure it before calling the DHIS2 API."
            )

        if config.api_token:
            return cls.api_token(config.base_url, config.api_token)

        if config.username and config.password:
            return cls.basic(config.base_url, config.username, config.password)

        raise RuntimeError(
            "DHIS2 credentials are incomplete. "
            "Set DHIS2_API_TOKEN, or DHIS2_USERNAME and DHIS2_PASSWORD."
        )

    @property
    def api_root(self) -> str:
        """Base URL normalised to end in ``/api`` without a trailing slash."""
        root = self.base_url.rstrip("/")
        if not root.endswith("/api"):
            root = f"{root}/api"
        return root

    def api_url(self, path: str) -> str:
        return f"{self.api_root}/{path.lstrip('/')}"

    def headers(self, accept: str = "application/json") -> Dict[str, str]:
        headers = {"Accept": accept}
        if self.authorization:
            headers["Authorization"] = self.authorization
        return headers
