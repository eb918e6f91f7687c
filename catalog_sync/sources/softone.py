from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from typing import Any

import requests

from catalog_sync.config.loader import ApiConfig
from catalog_sync.sources.base import PageResult, RowSourceError

"""SoftOne web-services client and the paged row source built on it.

Session handshake: ``login`` (username/password) returns a clientID, then
``authenticate`` (clientID + company/branch/module/refid) returns the
session clientID used by every later call. A ``success: false`` response
that looks like an expired session triggers one re-handshake and retry.
Transport failures (timeouts, connection errors, 5xx/429) are retried with
exponential backoff.
"""

__all__ = [
    "SoftOneAPIError",
    "SoftOneClient",
    "SoftOneRowSource",
]

logger = logging.getLogger(__name__)

USER_AGENT = "softone-catalog-sync/0.1"

_AUTH_ERROR_INDICATORS = (
    "clientid", "client id", "expired", "session", "authenticat", "not valid",
)
_SENSITIVE_KEYS = {"password", "pass", "clientid", "client_id", "username"}
# SoftOne installations frequently answer in the Greek ANSI code page
_FALLBACK_ENCODINGS = ("windows-1253", "iso-8859-7", "windows-1252")


class SoftOneAPIError(RowSourceError):
    pass


def redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: ("***" if str(k).lower() in _SENSITIVE_KEYS else redact(v)) for k, v in value.items()
        }
    if isinstance(value, list):
        return [redact(v) for v in value]
    return value


def extract_error_message(response: dict[str, Any], fallback: bool = True) -> str:
    for key in ("message", "Message", "error", "Error"):
        value = response.get(key)
        if isinstance(value, str) and value:
            return value
    errors = response.get("errors")
    if isinstance(errors, list):
        messages = [e if isinstance(e, str) else json.dumps(e, ensure_ascii=False) for e in errors]
        messages = [m for m in messages if m]
        if messages:
            return "; ".join(messages)
    return "SoftOne request failed" if fallback else ""


def is_authentication_error(response: dict[str, Any]) -> bool:
    message = extract_error_message(response, fallback=False).lower()
    if message and any(indicator in message for indicator in _AUTH_ERROR_INDICATORS):
        return True
    return str(response.get("errorCode", "")) in ("401", "403")


class SoftOneClient:
    def __init__(
        self,
        config: ApiConfig,
        *,
        session: requests.Session | None = None,
        max_retries: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.endpoint = config.endpoint.rstrip("/") if "?" not in config.endpoint else config.endpoint
        self.max_retries = max(1, max_retries)
        self._sleep = sleep
        self._client_id: str | None = None
        self.session = session or requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        })

    # ------------------------------------------------------------------ handshake
    def login(self) -> dict[str, Any]:
        if not self.config.username or not self.config.password:
            raise SoftOneAPIError("SoftOne credentials are missing (username/password)")
        payload = {"username": self.config.username, "password": self.config.password}
        response = self.call_service("login", payload, requires_client_id=False)
        if not response.get("clientID"):
            raise SoftOneAPIError("SoftOne login did not return a clientID")
        return response

    def authenticate(self, client_id: str, handshake: dict[str, str] | None = None) -> dict[str, Any]:
        if not client_id:
            raise SoftOneAPIError("cannot authenticate without a SoftOne clientID")
        payload: dict[str, Any] = {"clientID": client_id}
        for key, value in (handshake or self._handshake_fields()).items():
            if value:
                payload[key] = value
        response = self.call_service("authenticate", payload, requires_client_id=False)
        if not response.get("clientID"):
            raise SoftOneAPIError("SoftOne authentication did not return a clientID")
        return response

    def _handshake_fields(self, login_response: dict[str, Any] | None = None) -> dict[str, str]:
        fields = {
            "company": self.config.company or "",
            "branch": self.config.branch or "",
            "module": self.config.module or "",
            "refid": self.config.refid or "",
        }
        # values advertised by login fill the gaps left by configuration
        objs = (login_response or {}).get("objs")
        if isinstance(objs, list):
            first = next((o for o in objs if isinstance(o, dict)), None)
            if first:
                for key in fields:
                    value = first.get(key.upper(), first.get(key))
                    if not fields[key] and value not in (None, ""):
                        fields[key] = str(value).strip()
        return fields

    def get_client_id(self, force_refresh: bool = False) -> str:
        if self._client_id and not force_refresh:
            return self._client_id
        login_response = self.login()
        auth = self.authenticate(str(login_response["clientID"]), self._handshake_fields(login_response))
        self._client_id = str(auth["clientID"])
        logger.debug("SoftOne session established")
        return self._client_id

    def clear_client_id(self) -> None:
        self._client_id = None

    # ------------------------------------------------------------------ services
    def sql_data(
        self, sql_name: str, arguments: dict[str, Any] | None = None, extra: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        if not sql_name:
            raise SoftOneAPIError("a SQL name is required for SqlData requests")
        payload: dict[str, Any] = {"SqlName": sql_name, **(extra or {})}
        if arguments:
            payload["params"] = dict(arguments)
        return self.call_service("SqlData", payload)

    def call_service(
        self,
        service: str,
        data: dict[str, Any] | None = None,
        *,
        requires_client_id: bool = True,
        retry_on_authentication: bool = True,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"service": service, **(data or {})}
        if requires_client_id:
            body["clientID"] = self.get_client_id()
        if self.config.app_id and "appId" not in body:
            app_id = str(self.config.app_id)
            body["appId"] = int(app_id) if app_id.isdigit() else app_id

        response = self._dispatch(body, service)

        if response.get("success") is False:
            if requires_client_id and retry_on_authentication and is_authentication_error(response):
                logger.warning(f"SoftOne session appears to have expired, refreshing (service={service})")
                self.clear_client_id()
                return self.call_service(
                    service, data, requires_client_id=True, retry_on_authentication=False
                )
            raise SoftOneAPIError(
                f"SoftOne {service} failed: {extract_error_message(response)}",
                {"service": service, "request": redact(body), "response": redact(response)},
            )
        if requires_client_id and response.get("clientID"):
            self._client_id = str(response["clientID"])
        return response

    # ------------------------------------------------------------------ transport
    def _dispatch(self, body: dict[str, Any], service: str) -> dict[str, Any]:
        context = {"service": service, "endpoint": self.endpoint, "request": redact(body)}
        last_error: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                response = self.session.post(self.endpoint, json=body, timeout=self.config.timeout)
            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
                last_error = e
                logger.warning(f"SoftOne {service} transport error (attempt {attempt}/{self.max_retries}): {e}")
            except requests.exceptions.RequestException as e:
                raise SoftOneAPIError(f"SoftOne request error: {e}", context) from e
            else:
                status = response.status_code
                if status in (408, 429) or 500 <= status < 600:
                    last_error = SoftOneAPIError(f"SoftOne responded with HTTP {status}", context)
                    logger.warning(f"SoftOne {service} HTTP {status} (attempt {attempt}/{self.max_retries})")
                elif status < 200 or status >= 300:
                    raise SoftOneAPIError(
                        f"SoftOne responded with HTTP {status}: {response.text[:500]}",
                        {**context, "status_code": status},
                    )
                else:
                    return self._decode(response.content, context)
            if attempt < self.max_retries:
                self._sleep(min(2 ** (attempt - 1), 30))
        raise SoftOneAPIError(f"SoftOne {service} failed after {self.max_retries} attempts: {last_error}", context)

    @staticmethod
    def _decode(content: bytes, context: dict[str, Any]) -> dict[str, Any]:
        text: str | None = None
        try:
            text = content.decode("utf-8")
        except UnicodeDecodeError:
            for encoding in _FALLBACK_ENCODINGS:
                try:
                    text = content.decode(encoding)
                    break
                except UnicodeDecodeError:
                    continue
        if text is None:
            text = content.decode("utf-8", errors="replace")
        try:
            decoded = json.loads(text) if text.strip() else {}
        except ValueError as e:
            raise SoftOneAPIError(f"SoftOne returned invalid JSON: {e}", context) from e
        return decoded if isinstance(decoded, dict) else {}


class SoftOneRowSource:
    """Pages a stored SqlData query via ``pPage`` / ``pSize``."""

    def __init__(self, client: SoftOneClient) -> None:
        self.client = client

    def fetch_page(self, sql_name: str, params: dict[str, Any], page: int, page_size: int) -> PageResult:
        response = self.client.sql_data(sql_name, params, {"pPage": int(page), "pSize": int(page_size)})
        rows = response.get("rows") or []
        if not isinstance(rows, list):
            raise SoftOneAPIError("SqlData response 'rows' is not a list", {"sql_name": sql_name, "page": page})
        fields = response.get("fields")
        if rows and isinstance(rows[0], list) and isinstance(fields, list):
            # columnar responses: rows are value lists aligned with "fields"
            names = [f.get("name") if isinstance(f, dict) else str(f) for f in fields]
            rows = [dict(zip(names, r)) for r in rows]
        total = response.get("total", response.get("totalcount"))
        try:
            total = int(total) if total is not None else None
        except (TypeError, ValueError):
            total = None
        return PageResult(rows=[r for r in rows if isinstance(r, dict)], total=total)
