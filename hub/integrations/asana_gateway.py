"""
Asana integration gateway.

All outbound HTTP calls to Asana (REST API and OAuth token endpoint) go
through this class; services never call ``requests`` directly.

  - Bearer-token requests against https://app.asana.com/api/1.0
  - Cursor pagination (``limit=100`` + ``next_page.uri``)
  - Retry: 429 and network errors only, max 2 retries (1 s → 4 s)
  - Timeout: 30 s per call
  - Errors raise ``UpstreamError`` carrying Asana's first error message

Testability: pass a fake ``session`` to AsanaGateway() in tests instead of
letting it create a real requests.Session internally.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import requests

from hub.core.exceptions import UpstreamError

logger = logging.getLogger(__name__)

ASANA_API_BASE = "https://app.asana.com/api/1.0"
ASANA_AUTHORIZE_URL = "https://app.asana.com/-/oauth_authorize"
ASANA_TOKEN_URL = "https://app.asana.com/-/oauth_token"

PAGE_LIMIT = 100

_RETRY_MAX = 2
_RETRY_BACKOFF_SECONDS = [1, 4]
_DEFAULT_TIMEOUT = 30


class AsanaGateway:
    """Thin, retrying client for the Asana REST API."""

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session: requests.Session | None = session
        self.retry_backoff = list(_RETRY_BACKOFF_SECONDS)

    # ── HTTP session ─────────────────────────────────────────────────────────

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def use_session(self, session: requests.Session | None) -> None:
        """Swap the HTTP session (tests)."""
        self._session = session

    def _do_request(
        self,
        method: str,
        url: str,
        headers: dict,
        *,
        json_body: dict | None = None,
        data: dict | None = None,
        params: dict | None = None,
        timeout: int = _DEFAULT_TIMEOUT,
    ) -> requests.Response:
        """Execute a single HTTP request, no retry logic here."""
        kwargs: dict[str, Any] = {"headers": headers, "timeout": timeout}
        if json_body is not None:
            kwargs["json"] = json_body
        if data is not None:
            kwargs["data"] = data
        if params:
            kwargs["params"] = params
        return self.session.request(method, url, **kwargs)

    @staticmethod
    def _error_message(resp) -> str:
        try:
            body = resp.json()
        except ValueError:
            body = {}
        errors = body.get("errors") if isinstance(body, dict) else None
        if errors and isinstance(errors, list) and errors[0].get("message"):
            return errors[0]["message"]
        return f"Asana API error: {resp.status_code}"

    # ── REST API ─────────────────────────────────────────────────────────────

    def request(
        self,
        token: str,
        path: str,
        method: str = "GET",
        *,
        json_body: dict | None = None,
        params: dict | None = None,
        timeout: int = _DEFAULT_TIMEOUT,
    ) -> dict:
        """Authenticated call to ``ASANA_API_BASE + path``.

        *path* may already carry a query string. Returns the parsed JSON body
        (``{}`` for an empty body). Raises ``UpstreamError`` on any non-2xx
        response or when retries are exhausted.
        """
        url = path if path.startswith("http") else f"{ASANA_API_BASE}{path}"
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        last_error = "Asana request failed"

        for attempt in range(_RETRY_MAX + 1):
            try:
                resp = self._do_request(
                    method, url, headers, json_body=json_body, params=params, timeout=timeout,
                )
            except requests.RequestException as exc:
                last_error = str(exc)[:500]
                logger.warning(
                    "Asana network error attempt=%d/%d %s %s error=%s",
                    attempt + 1, _RETRY_MAX + 1, method, path, last_error,
                )
            else:
                if resp.ok:
                    try:
                        return resp.json() if resp.content else {}
                    except ValueError:
                        return {}
                if resp.status_code != 429:
                    message = self._error_message(resp)
                    logger.warning("Asana %s %s failed status=%d: %s",
                                   method, path, resp.status_code, message)
                    raise UpstreamError(message, status_code=resp.status_code)
                last_error = self._error_message(resp)
                logger.warning("Asana rate limited attempt=%d/%d %s %s",
                               attempt + 1, _RETRY_MAX + 1, method, path)

            if attempt < _RETRY_MAX and self.retry_backoff:
                time.sleep(self.retry_backoff[min(attempt, len(self.retry_backoff) - 1)])

        raise UpstreamError(last_error)

    def get(self, token: str, path: str, **kwargs) -> dict:
        return self.request(token, path, "GET", **kwargs)

    def post(self, token: str, path: str, payload: dict) -> dict:
        return self.request(token, path, "POST", json_body={"data": payload})

    def put(self, token: str, path: str, payload: dict) -> dict:
        return self.request(token, path, "PUT", json_body={"data": payload})

    def fetch_all_pages(self, token: str, path: str) -> list:
        """Follow ``next_page.uri`` until exhausted and return every ``data`` item."""
        sep = "&" if "?" in path else "?"
        url = f"{path}{sep}limit={PAGE_LIMIT}"
        items: list = []
        while url:
            body = self.request(token, url)
            items.extend(body.get("data") or [])
            next_page = body.get("next_page") or {}
            url = next_page.get("uri")
        return items

    # ── OAuth ────────────────────────────────────────────────────────────────

    def _token_request(self, form: dict) -> requests.Response:
        return self._do_request(
            "POST", ASANA_TOKEN_URL,
            {"Content-Type": "application/x-www-form-urlencoded"},
            data=form,
        )

    def exchange_code(self, code, client_id, client_secret, redirect_uri) -> dict:
        """Authorization code → token response. Raises ``UpstreamError``."""
        try:
            resp = self._token_request({
                "grant_type": "authorization_code",
                "client_id": client_id,
                "client_secret": client_secret,
                "redirect_uri": redirect_uri,
                "code": code,
            })
        except requests.RequestException as exc:
            raise UpstreamError(f"Asana token exchange failed: {exc}") from exc
        if not resp.ok:
            logger.warning("Asana token exchange failed status=%d", resp.status_code)
            raise UpstreamError("token_exchange_failed", status_code=resp.status_code)
        return resp.json()

    def refresh_access_token(self, refresh_token, client_id, client_secret) -> dict | None:
        """Refresh grant. Returns the token response, or None when Asana
        refuses (token revoked)."""
        try:
            resp = self._token_request({
                "grant_type": "refresh_token",
                "client_id": client_id,
                "client_secret": client_secret,
                "refresh_token": refresh_token,
            })
        except requests.RequestException as exc:
            logger.warning("Asana token refresh network error: %s", exc)
            return None
        if not resp.ok:
            logger.info("Asana token refresh refused status=%d", resp.status_code)
            return None
        return resp.json()


asana_gateway = AsanaGateway()
