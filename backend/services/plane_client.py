"""Thin HTTP client for the Plane REST API."""

import logging
from typing import Optional, Tuple

import requests

from services.plane_errors import (
    AccessDeniedError,
    NotInitializedError,
    ParseError,
    RateLimitedError,
    UpstreamError,
)

logger = logging.getLogger(__name__)


def normalize_page(data) -> Tuple[list, Optional[str]]:
    """Split one list response into ``(items, next_cursor)``.

    Plane list endpoints answer with one of three shapes:
      - a bare JSON array
      - ``{"results": [...], "next_cursor": "...", "next_page_results": bool}``
      - ``{"grouped_by": {"<group>": [...], ...}, "next_cursor": ...}``

    Anything else raises ParseError instead of passing for an empty page.
    """
    if isinstance(data, list):
        return data, None

    if not isinstance(data, dict):
        raise ParseError(f"Unrecognised list response of type {type(data).__name__}")

    if isinstance(data.get("results"), list):
        items = data["results"]
    elif isinstance(data.get("grouped_by"), dict):
        items = []
        for group in data["grouped_by"].values():
            if isinstance(group, list):
                items.extend(group)
    else:
        raise ParseError(
            f"Unrecognised list response with keys: {sorted(data.keys())}"
        )

    cursor = data.get("next_cursor") or None
    # Plane keeps sending a cursor on the last page, flagged by next_page_results.
    if data.get("next_page_results") is False:
        cursor = None
    return items, cursor


def _parse_retry_after(value) -> Optional[float]:
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except (TypeError, ValueError):
        return None


class PlaneClient:
    """Authenticated GET access to one Plane workspace."""

    DEFAULT_TIMEOUT = 45

    def __init__(self, base_url: str, api_key: str, workspace_slug: str,
                 timeout: Optional[float] = None,
                 session: Optional[requests.Session] = None):
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key
        self.workspace_slug = workspace_slug
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self._session = session or requests.Session()
        self._session.headers.update({
            "X-API-KEY": api_key or "",
            "Accept": "application/json",
            "Content-Type": "application/json",
        })

    @property
    def is_configured(self) -> bool:
        return all([self.base_url, self.api_key, self.workspace_slug])

    def ensure_configured(self):
        if not self.is_configured:
            raise NotInitializedError(
                "Plane API client not initialized: set PLANE_BASE_URL, "
                "PLANE_API_KEY and WORKSPACE_SLUG"
            )

    def workspace_path(self, suffix: str = "") -> str:
        """Path under the configured workspace, e.g. ``/workspaces/acme/projects/``."""
        return f"/workspaces/{self.workspace_slug}{suffix}"

    def _request(self, endpoint: str, params: Optional[dict] = None,
                 context: str = ""):
        """Make authenticated GET request to the Plane API.

        Maps HTTP failures onto the error taxonomy: 429 becomes
        RateLimitedError (with Retry-After), 403 AccessDeniedError, any other
        4xx/5xx or connection failure UpstreamError.
        """
        self.ensure_configured()
        context = context or endpoint

        try:
            response = self._session.get(
                f"{self.base_url}{endpoint}",
                params=params,
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise UpstreamError(f"Failed to connect to Plane: {e}", context=context) from e

        status = response.status_code
        if status == 429:
            raise RateLimitedError(
                f"Rate limited on {context}",
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
                context=context
            )
        if status == 403:
            raise AccessDeniedError(f"No access to {context}", context=context)
        if status >= 400:
            raise UpstreamError(
                f"Plane API error: {status}", status_code=status, context=context
            )

        try:
            return response.json()
        except ValueError as e:
            raise ParseError(f"Invalid JSON from {context}", context=context) from e
