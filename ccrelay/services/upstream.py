"""Upstream Messages API client

A client is built per request from the caller's credential and is used for
exactly one call, so no connection state is ever shared between callers.
"""
import json
from typing import Any, AsyncIterator, Mapping, Optional

import httpx

from ccrelay.core.credentials import Credential
from ccrelay.core.error_types import ERROR_TYPE_API, ERROR_TYPE_STREAM, ERROR_TYPE_TIMEOUT
from ccrelay.core.exceptions import UpstreamError, UpstreamStreamError
from ccrelay.core.logging import get_logger
from ccrelay.core.utils import mask_secret
from ccrelay.models.config import AppConfig
from ccrelay.utils.streaming import is_valid_event_type, iter_sse_events

logger = get_logger()

MESSAGES_PATH = "/v1/messages"

# Caller headers passed through to the upstream as-is
FORWARDED_HEADERS = ("anthropic-beta",)


def _string_or(value, default: str) -> str:
    return value if isinstance(value, str) and value else default


def parse_upstream_error(response: httpx.Response) -> UpstreamError:
    """Turn a failed upstream response into an UpstreamError

    Anthropic-style bodies keep their error type and message, anything else
    falls back to api_error.
    """
    try:
        error_json = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        error_json = {"error": {"message": response.text or f"HTTP {response.status_code}"}}

    # Handle both error formats: {"error": {"message": "..."}} and {"error": "..."}
    error_obj = error_json.get("error", {}) if isinstance(error_json, dict) else {}
    if isinstance(error_obj, str):
        message, error_type = error_obj, ERROR_TYPE_API
    elif isinstance(error_obj, dict):
        message = error_obj.get("message") or f"HTTP {response.status_code}"
        error_type = _string_or(error_obj.get("type"), ERROR_TYPE_API)
    else:
        message, error_type = f"HTTP {response.status_code}", ERROR_TYPE_API

    return UpstreamError(message, status_code=response.status_code, error_type=error_type)


def translate_transport_error(exc: httpx.HTTPError, upstream: str) -> UpstreamError:
    """Map an httpx transport failure to an UpstreamError without an upstream status"""
    if isinstance(exc, httpx.TimeoutException):
        return UpstreamError(f"Upstream {upstream} timed out", error_type=ERROR_TYPE_TIMEOUT)
    return UpstreamError(f"Upstream {upstream} network error: {exc}", error_type=ERROR_TYPE_API)


class UpstreamStream:
    """An open streaming response from the upstream"""

    def __init__(self, client: httpx.AsyncClient, response: httpx.Response, upstream: str):
        self._client = client
        self._response = response
        self.upstream = upstream
        self._closed = False

    @property
    def status_code(self) -> int:
        return self._response.status_code

    async def events(self) -> AsyncIterator[dict]:
        """Yield upstream events in order, skipping keep-alive pings

        Raises:
            UpstreamStreamError: on an upstream ``error`` event, an unparseable
                event, or a transport failure mid-stream
        """
        try:
            async for sse in iter_sse_events(self._response.aiter_lines()):
                if sse.event == "ping":
                    continue
                if sse.data is None:
                    continue

                try:
                    payload = json.loads(sse.data)
                except json.JSONDecodeError:
                    raise UpstreamStreamError(f"Upstream sent a non-JSON event: {sse.data[:200]}")

                if sse.event == "error":
                    error_obj = payload.get("error") if isinstance(payload, dict) else None
                    if not isinstance(error_obj, dict):
                        error_obj = {}
                    raise UpstreamStreamError(
                        error_obj.get("message") or sse.data,
                        error_type=_string_or(error_obj.get("type"), ERROR_TYPE_STREAM),
                    )

                if not isinstance(payload, dict) or not isinstance(payload.get("type"), str):
                    raise UpstreamStreamError("Upstream sent an event without a type")
                # The type becomes the outbound "event:" line
                if not is_valid_event_type(payload["type"]):
                    raise UpstreamStreamError("Upstream sent an event type that is not a single line")
                if payload["type"] == "ping":
                    continue

                yield payload
        except httpx.HTTPError as e:
            logger.error(f"Transport error while streaming from {self.upstream}: {type(e).__name__}: {e}")
            raise UpstreamStreamError(f"Upstream {self.upstream} connection failed: {e}") from e

    async def aclose(self) -> None:
        """Close the response and its client. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            await self._response.aclose()
        finally:
            await self._client.aclose()


class UpstreamClient:
    """Issues a single Messages API call with one caller's credential"""

    def __init__(
        self,
        credential: Credential,
        *,
        anthropic_version: str,
        timeout: float,
        verify_ssl: bool = True,
        extra_headers: Optional[Mapping[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.credential = credential
        self.anthropic_version = anthropic_version
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self.extra_headers = dict(extra_headers or {})
        self._transport = transport

    def __repr__(self) -> str:
        return (
            f"UpstreamClient(base_url={self.credential.base_url!r}, "
            f"token={mask_secret(self.credential.token)!r})"
        )

    @property
    def url(self) -> str:
        return f"{self.credential.base_url}{MESSAGES_PATH}"

    @property
    def upstream(self) -> str:
        """Upstream host, used to tag logs"""
        return httpx.URL(self.credential.base_url).host

    def _headers(self) -> dict:
        headers = {
            "Authorization": f"Bearer {self.credential.token}",
            "Content-Type": "application/json",
            "anthropic-version": self.anthropic_version,
        }
        headers.update(self.extra_headers)
        return headers

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            verify=self.verify_ssl,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def create_message(self, body: dict) -> Any:
        """Buffered call: return the upstream's JSON document as-is

        Raises:
            UpstreamError: on HTTP failure status, transport failure or a non-JSON body
        """
        logger.debug(f"Forwarding buffered request to {self.url} token={mask_secret(self.credential.token)}")
        async with self._http_client() as client:
            try:
                response = await client.post(self.url, json=body, headers=self._headers())
            except httpx.HTTPError as e:
                logger.error(f"Transport error calling {self.upstream}: {type(e).__name__}: {e}")
                raise translate_transport_error(e, self.upstream) from e

        if response.status_code >= 400:
            raise parse_upstream_error(response)

        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise UpstreamError(f"Upstream {self.upstream} returned a non-JSON response") from e

    async def open_stream(self, body: dict) -> UpstreamStream:
        """Streaming call: send the request and wait for the response headers

        Failures up to this point still surface as UpstreamError, so the caller
        can answer with a regular error status.
        """
        logger.debug(f"Opening stream to {self.url} token={mask_secret(self.credential.token)}")
        payload = {**body, "stream": True}
        client = self._http_client()
        try:
            request = client.build_request("POST", self.url, json=payload, headers=self._headers())
            response = await client.send(request, stream=True)
        except httpx.HTTPError as e:
            await client.aclose()
            logger.error(f"Transport error calling {self.upstream}: {type(e).__name__}: {e}")
            raise translate_transport_error(e, self.upstream) from e
        except BaseException:
            await client.aclose()
            raise

        if response.status_code >= 400:
            try:
                await response.aread()
            finally:
                await response.aclose()
                await client.aclose()
            raise parse_upstream_error(response)

        return UpstreamStream(client, response, self.upstream)


def build_upstream_client(
    credential: Credential,
    config: AppConfig,
    caller_headers: Optional[Mapping[str, str]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> UpstreamClient:
    """Create the request-scoped upstream handle. No I/O happens here."""
    caller_headers = caller_headers or {}
    extra_headers = {
        name: caller_headers[name]
        for name in FORWARDED_HEADERS
        if caller_headers.get(name)
    }

    return UpstreamClient(
        credential,
        anthropic_version=caller_headers.get("anthropic-version") or config.anthropic_version,
        timeout=float(config.request_timeout_secs),
        verify_ssl=config.verify_ssl,
        extra_headers=extra_headers,
        transport=transport,
    )
