"""Messages API relay endpoint.

Requests are forwarded verbatim to the upstream named in the caller's
credential; buffered responses are returned as-is and streamed responses are
re-framed as server-sent events.
"""
import json

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from ccrelay.api.dependencies import get_app_config, require_credential
from ccrelay.core.credentials import Credential
from ccrelay.core.error_types import ERROR_TYPE_INTERNAL
from ccrelay.core.exceptions import InvalidRequestError, ProxyError, build_error_envelope
from ccrelay.core.logging import clear_upstream_context, get_logger, set_upstream_context
from ccrelay.models.config import AppConfig
from ccrelay.services.upstream import UpstreamClient, build_upstream_client
from ccrelay.utils.streaming import SSE_HEADERS, translate_events

router = APIRouter()
logger = get_logger()


async def read_json_body(request: Request) -> dict:
    """Parse the request body as a JSON object

    Raises:
        InvalidRequestError: 400 if the body is not valid JSON or not an object
    """
    raw = await request.body()
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidRequestError("Request body must be valid JSON")

    if not isinstance(data, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    return data


@router.post("/messages")
async def create_message(
    request: Request,
    credential: Credential = Depends(require_credential),
    config: AppConfig = Depends(get_app_config),
):
    """Relay a Messages API request to the caller's upstream.

    Supports both streaming and non-streaming modes, selected by the body's
    ``stream`` flag.
    """
    try:
        body = await read_json_body(request)
        stream = body.get("stream") is True

        client = build_upstream_client(credential, config, caller_headers=request.headers)
        request.state.upstream = client.upstream
        set_upstream_context(client.upstream)

        logger.debug(
            f"Processing messages request: model={body.get('model')} "
            f"stream={stream} client={client!r}"
        )

        if stream:
            return await _handle_streaming_request(request, client, body, config)
        return await _handle_non_streaming_request(client, body)

    except ProxyError:
        raise
    except Exception:
        logger.exception("Unexpected error processing messages request")
        return JSONResponse(
            content=build_error_envelope("Internal server error", ERROR_TYPE_INTERNAL),
            status_code=500,
        )
    finally:
        clear_upstream_context()


async def _handle_non_streaming_request(client: UpstreamClient, body: dict) -> JSONResponse:
    """Handle buffered request: the upstream document is returned untouched."""
    result = await client.create_message(body)
    return JSONResponse(content=result, status_code=200)


async def _handle_streaming_request(
    request: Request,
    client: UpstreamClient,
    body: dict,
    config: AppConfig,
) -> StreamingResponse:
    """Handle streaming request.

    The upstream stream is opened before the response starts, so upstream
    failures up to that point still produce a regular error status.
    """
    upstream_stream = await client.open_stream(body)

    frames = translate_events(
        upstream_stream.events(),
        disconnect_check=request.is_disconnected,
        emit_done=config.emit_done_event,
    )

    async def stream_generator():
        set_upstream_context(upstream_stream.upstream)
        try:
            async for frame in frames:
                yield frame.encode()
        finally:
            await frames.aclose()
            await upstream_stream.aclose()
            clear_upstream_context()

    return StreamingResponse(
        stream_generator(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
        # Covers responses whose body iterator never started
        background=BackgroundTask(upstream_stream.aclose),
    )