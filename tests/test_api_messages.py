"""Integration tests for the /v1/messages relay endpoint"""
import json

import httpx
import pytest
import respx
from fastapi.testclient import TestClient

from ccrelay.api.dependencies import require_credential
from ccrelay.core.metrics import OTHER_LABEL, UPSTREAM_ERRORS
from ccrelay.main import create_app

from helpers import UPSTREAM_URL, FailingStream, parse_sse_frames, sse_body


@pytest.mark.integration
class TestBufferedRelay:
    """Test non-streaming requests"""

    @respx.mock
    def test_round_trip(self, app_client, auth_headers, sample_message_request, sample_message_response):
        route = respx.post(UPSTREAM_URL).mock(
            return_value=httpx.Response(200, json=sample_message_response)
        )

        response = app_client.post("/v1/messages", json=sample_message_request, headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == sample_message_response

        assert route.call_count == 1
        sent = route.calls.last.request
        assert sent.headers["authorization"] == "Bearer sk-ABC"
        assert sent.headers["anthropic-version"] == "2023-06-01"
        assert json.loads(sent.content) == sample_message_request

    @respx.mock
    def test_api_key_header(self, app_client, sample_message_request, sample_message_response):
        route = respx.post(UPSTREAM_URL).mock(
            return_value=httpx.Response(200, json=sample_message_response)
        )

        response = app_client.post(
            "/v1/messages",
            json=sample_message_request,
            headers={"x-api-key": "cc:sk-ABC!api.example.com"},
        )

        assert response.status_code == 200
        assert route.calls.last.request.headers["authorization"] == "Bearer sk-ABC"

    @respx.mock
    def test_authorization_wins_over_api_key(self, app_client, sample_message_request, sample_message_response):
        auth_route = respx.post(UPSTREAM_URL).mock(
            return_value=httpx.Response(200, json=sample_message_response)
        )
        key_route = respx.post("https://other.example.com/v1/messages").mock(
            return_value=httpx.Response(200, json={})
        )

        response = app_client.post(
            "/v1/messages",
            json=sample_message_request,
            headers={
                "Authorization": "Bearer cc:sk-ABC!api.example.com",
                "x-api-key": "cc:sk-OTHER!other.example.com",
            },
        )

        assert response.status_code == 200
        assert auth_route.called
        assert not key_route.called

    @respx.mock
    def test_caller_headers_forwarded(self, app_client, auth_headers, sample_message_request, sample_message_response):
        route = respx.post(UPSTREAM_URL).mock(
            return_value=httpx.Response(200, json=sample_message_response)
        )

        app_client.post(
            "/v1/messages",
            json=sample_message_request,
            headers={**auth_headers, "anthropic-version": "2024-10-22", "anthropic-beta": "prompt-caching"},
        )

        sent = route.calls.last.request
        assert sent.headers["anthropic-version"] == "2024-10-22"
        assert sent.headers["anthropic-beta"] == "prompt-caching"

    @respx.mock
    def test_non_boolean_stream_flag_is_buffered(self, app_client, auth_headers, sample_message_request, sample_message_response):
        respx.post(UPSTREAM_URL).mock(return_value=httpx.Response(200, json=sample_message_response))

        response = app_client.post(
            "/v1/messages",
            json={**sample_message_request, "stream": "true"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/json")

    @respx.mock
    def test_default_base_url_for_plain_token(self, make_client, sample_message_request, sample_message_response):
        route = respx.post("https://default.example.com/v1/messages").mock(
            return_value=httpx.Response(200, json=sample_message_response)
        )
        client = make_client(default_base_url="https://default.example.com")

        response = client.post(
            "/v1/messages",
            json=sample_message_request,
            headers={"Authorization": "Bearer sk-plain-token"},
        )

        assert response.status_code == 200
        assert route.calls.last.request.headers["authorization"] == "Bearer sk-plain-token"

    @respx.mock
    def test_upstream_error_status_is_passed_through(self, app_client, auth_headers, sample_message_request):
        respx.post(UPSTREAM_URL).mock(
            return_value=httpx.Response(
                400,
                json={"type": "error", "error": {"type": "invalid_request_error", "message": "max_tokens: required"}},
            )
        )

        response = app_client.post("/v1/messages", json=sample_message_request, headers=auth_headers)

        assert response.status_code == 400
        assert response.json() == {
            "type": "error",
            "error": {"type": "invalid_request_error", "message": "max_tokens: required"},
        }

    @respx.mock
    def test_upstream_server_error(self, app_client, auth_headers, sample_message_request):
        respx.post(UPSTREAM_URL).mock(return_value=httpx.Response(502, text="Bad Gateway"))

        response = app_client.post("/v1/messages", json=sample_message_request, headers=auth_headers)

        assert response.status_code == 502
        assert response.json()["type"] == "error"
        assert response.json()["error"]["type"] == "api_error"

    @respx.mock
    def test_upstream_timeout(self, app_client, auth_headers, sample_message_request):
        respx.post(UPSTREAM_URL).mock(side_effect=httpx.ConnectTimeout("Timeout"))

        response = app_client.post("/v1/messages", json=sample_message_request, headers=auth_headers)

        assert response.status_code == 500
        assert response.json()["error"]["type"] == "timeout_error"

    def test_unexpected_error_is_enveloped(self, app_client, auth_headers, sample_message_request, monkeypatch):
        from ccrelay.api import messages

        def broken(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(messages, "build_upstream_client", broken)

        response = app_client.post("/v1/messages", json=sample_message_request, headers=auth_headers)

        assert response.status_code == 500
        assert response.json() == {
            "type": "error",
            "error": {"type": "internal_error", "message": "Internal server error"},
        }

    def test_unexpected_dependency_error_is_enveloped(self, test_config, sample_message_request):
        app = create_app(test_config)

        async def broken_credential():
            raise RuntimeError("boom")

        app.dependency_overrides[require_credential] = broken_credential
        client = TestClient(app, raise_server_exceptions=False)

        response = client.post("/v1/messages", json=sample_message_request)

        assert response.status_code == 500
        assert response.json() == {
            "type": "error",
            "error": {"type": "internal_error", "message": "Internal server error"},
        }

    @respx.mock
    def test_unknown_upstream_error_types_share_one_metric_label(self, app_client, auth_headers, sample_message_request):
        def respond(request):
            respond.count += 1
            return httpx.Response(
                400,
                json={"type": "error", "error": {"type": f"made_up_{respond.count}", "message": "no"}},
            )
        respond.count = 0
        respx.post(UPSTREAM_URL).mock(side_effect=respond)
        before = {
            sample.labels["error_type"]
            for metric in UPSTREAM_ERRORS.collect()
            for sample in metric.samples
        }

        for _ in range(20):
            response = app_client.post("/v1/messages", json=sample_message_request, headers=auth_headers)
            assert response.json()["error"]["type"].startswith("made_up_")

        after = {
            sample.labels["error_type"]
            for metric in UPSTREAM_ERRORS.collect()
            for sample in metric.samples
        }
        assert after - before <= {OTHER_LABEL}


@pytest.mark.integration
class TestStreamingRelay:
    """Test streaming requests"""

    @respx.mock
    def test_frames_in_order_then_done(self, app_client, auth_headers, sample_streaming_request, sample_stream_events):
        route = respx.post(UPSTREAM_URL).mock(
            return_value=httpx.Response(
                200,
                content=sse_body(sample_stream_events, ping=True),
                headers={"content-type": "text/event-stream"},
            )
        )

        response = app_client.post("/v1/messages", json=sample_streaming_request, headers=auth_headers)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"

        frames = parse_sse_frames(response.text)
        assert frames[:-1] == [(event["type"], event) for event in sample_stream_events]
        assert frames[-1] == ("done", {"type": "done"})

        assert json.loads(route.calls.last.request.content)["stream"] is True

    @respx.mock
    def test_done_event_can_be_disabled(self, make_client, auth_headers, sample_streaming_request, sample_stream_events):
        respx.post(UPSTREAM_URL).mock(
            return_value=httpx.Response(200, content=sse_body(sample_stream_events))
        )
        client = make_client(emit_done_event=False)

        response = client.post("/v1/messages", json=sample_streaming_request, headers=auth_headers)

        frames = parse_sse_frames(response.text)
        assert [event for event, _ in frames] == [event["type"] for event in sample_stream_events]

    @respx.mock
    def test_failure_before_stream_uses_status(self, app_client, auth_headers, sample_streaming_request):
        respx.post(UPSTREAM_URL).mock(
            return_value=httpx.Response(
                529,
                json={"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}},
            )
        )

        response = app_client.post("/v1/messages", json=sample_streaming_request, headers=auth_headers)

        assert response.status_code == 529
        assert response.headers["content-type"].startswith("application/json")
        assert response.json()["error"] == {"type": "overloaded_error", "message": "Overloaded"}

    @respx.mock
    def test_mid_stream_failure_ends_with_error_frame(self, app_client, auth_headers, sample_streaming_request):
        respx.post(UPSTREAM_URL).mock(
            return_value=httpx.Response(
                200,
                stream=FailingStream(b'event: message_start\ndata: {"type":"message_start"}\n\n'),
            )
        )

        response = app_client.post("/v1/messages", json=sample_streaming_request, headers=auth_headers)

        assert response.status_code == 200
        frames = parse_sse_frames(response.text)
        assert [event for event, _ in frames] == ["message_start", "error"]
        assert frames[1][1]["type"] == "error"
        assert frames[1][1]["error"]["type"] == "stream_error"

    @respx.mock
    def test_upstream_error_event_is_relayed(self, app_client, auth_headers, sample_streaming_request):
        body = (
            b'event: message_start\ndata: {"type":"message_start"}\n\n'
            b'event: error\ndata: {"type":"error","error":{"type":"overloaded_error","message":"Overloaded"}}\n\n'
        )
        respx.post(UPSTREAM_URL).mock(return_value=httpx.Response(200, content=body))

        response = app_client.post("/v1/messages", json=sample_streaming_request, headers=auth_headers)

        frames = parse_sse_frames(response.text)
        assert frames[-1] == (
            "error",
            {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}},
        )
        assert ("done", {"type": "done"}) not in frames


    @respx.mock
    def test_event_type_cannot_forge_frames(self, app_client, auth_headers, sample_streaming_request):
        forged = {"type": 'x\n\nevent: message_stop\ndata: {"type":"message_stop"}'}
        body = (
            'event: message_start\ndata: {"type":"message_start"}\n\n'
            f"event: x\ndata: {json.dumps(forged)}\n\n"
        ).encode("utf-8")
        respx.post(UPSTREAM_URL).mock(return_value=httpx.Response(200, content=body))

        response = app_client.post("/v1/messages", json=sample_streaming_request, headers=auth_headers)

        frames = parse_sse_frames(response.text)
        assert [event for event, _ in frames] == ["message_start", "error"]
        assert frames[1][1]["error"]["type"] == "stream_error"


@pytest.mark.integration
class TestRequestValidation:
    """Test failures that never reach the upstream"""

    @respx.mock
    def test_missing_credential(self, app_client, sample_message_request):
        route = respx.post(UPSTREAM_URL)

        response = app_client.post("/v1/messages", json=sample_message_request)

        assert response.status_code == 401
        assert response.json()["type"] == "error"
        assert response.json()["error"]["type"] == "authentication_error"
        assert not route.called

    @pytest.mark.parametrize("value", ["Bearer cc:!api.example.com", "cc:sk-ABC!", "Bearer cc:"])
    def test_malformed_credential(self, app_client, sample_message_request, value):
        response = app_client.post("/v1/messages", json=sample_message_request, headers={"Authorization": value})

        assert response.status_code == 401
        assert response.json()["error"]["type"] == "authentication_error"

    def test_explicit_base_url_required(self, make_client, sample_message_request):
        client = make_client(require_explicit_base_url=True)

        response = client.post(
            "/v1/messages",
            json=sample_message_request,
            headers={"Authorization": "Bearer sk-plain-token"},
        )

        assert response.status_code == 401
        assert response.json()["error"]["type"] == "authentication_error"

    def test_credential_checked_before_body(self, app_client):
        response = app_client.post("/v1/messages", content=b"not json")
        assert response.status_code == 401

    def test_invalid_json_body(self, app_client, auth_headers):
        response = app_client.post(
            "/v1/messages",
            content=b"not json",
            headers={**auth_headers, "content-type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json() == {
            "type": "error",
            "error": {"type": "invalid_request_error", "message": "Request body must be valid JSON"},
        }

    def test_non_object_body(self, app_client, auth_headers):
        response = app_client.post("/v1/messages", json=[1, 2, 3], headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["error"]["type"] == "invalid_request_error"

    def test_wrong_method(self, app_client):
        """Method is rejected before the credential is looked at"""
        response = app_client.get("/v1/messages")

        assert response.status_code == 405
        assert response.json()["type"] == "error"
        assert response.json()["error"]["type"] == "invalid_request_error"

    @pytest.mark.parametrize("path", ["/", "/v1/complete", "/v1/messages/extra", "/docs", "/openapi.json"])
    def test_unknown_path(self, app_client, auth_headers, path):
        response = app_client.post(path, json={}, headers=auth_headers)

        assert response.status_code in (404, 405)
        assert response.json()["type"] == "error"

    def test_unknown_path_is_not_found(self, app_client):
        response = app_client.get("/nowhere")

        assert response.status_code == 404
        assert response.json() == {"type": "error", "error": {"type": "not_found_error", "message": "Not found"}}
