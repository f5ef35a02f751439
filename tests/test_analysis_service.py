"""Tests for analysis_service.py - Analysis Service HTTP client."""

import json

import httpx
import pytest

from subgate.analysis_service import AnalysisServiceClient, TokenProvider, create_analysis_service_client
from subgate.config import get_settings_for_testing
from subgate.exceptions import AnalysisServiceError

TOKEN_URL = "http://auth.test/oauth/token"
BASE_URL = "http://analysis.test"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _token_handler(calls, expires_in=60):
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"access_token": f"token-{len(calls)}", "expires_in": expires_in})
    return handler


class TestTokenProvider:
    """Tests for TokenProvider."""

    def test_token_is_cached_until_renewal_margin(self):
        calls = []
        clock = FakeClock()
        provider = TokenProvider(
            TOKEN_URL, "client", "secret",
            client=httpx.Client(transport=httpx.MockTransport(_token_handler(calls))),
            clock=clock,
        )

        assert provider.get_token() == "token-1"
        clock.now += 54
        assert provider.get_token() == "token-1"
        assert len(calls) == 1

        # Renewed 5 seconds before expiry
        clock.now += 1
        assert provider.get_token() == "token-2"
        assert len(calls) == 2

    def test_grant_request_uses_client_credentials(self):
        calls = []
        provider = TokenProvider(
            TOKEN_URL, "client", "secret",
            client=httpx.Client(transport=httpx.MockTransport(_token_handler(calls))),
        )
        provider.get_token()

        body = calls[0].content.decode()
        assert "grant_type=client_credentials" in body
        assert "client_id=client" in body
        assert "client_secret=secret" in body

    def test_missing_credentials_raise(self):
        provider = TokenProvider(TOKEN_URL, None, None)
        with pytest.raises(AnalysisServiceError) as exc_info:
            provider.get_token()
        assert "CLIENT_ID or CLIENT_SECRET" in exc_info.value.message

    def test_failed_grant_raises(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(401, json={"message": "bad client"}))
        provider = TokenProvider(TOKEN_URL, "client", "wrong", client=httpx.Client(transport=transport))

        with pytest.raises(AnalysisServiceError) as exc_info:
            provider.get_token()
        assert exc_info.value.http_status == 401
        assert "bad client" in exc_info.value.message

    def test_non_json_grant_response_raises(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>sign in</html>"))
        provider = TokenProvider(TOKEN_URL, "client", "secret", client=httpx.Client(transport=transport))

        with pytest.raises(AnalysisServiceError) as exc_info:
            provider.get_token()
        assert "invalid JSON response" in exc_info.value.message


class RecordingService:
    """MockTransport handler recording requests and replying from a route table."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key not in self.routes:
            return httpx.Response(404, json={"message": f"no route {key}"})
        status, body = self.routes[key]
        return httpx.Response(status, json=body)


def _client(service, token_provider=None, allow_duplicates=False):
    return AnalysisServiceClient(
        BASE_URL,
        token_provider=token_provider,
        allow_duplicates=allow_duplicates,
        client=httpx.Client(transport=httpx.MockTransport(service)),
    )


class TestAnalysisServiceClient:
    """Tests for AnalysisServiceClient."""

    def test_submit_posts_payload_with_bearer_token(self):
        service = RecordingService({("POST", "/submit/ORG"): (200, {"analysisId": "A1", "status": "OK"})})
        token_provider = TokenProvider(
            TOKEN_URL, "client", "secret",
            client=httpx.Client(transport=httpx.MockTransport(_token_handler([]))),
        )
        client = _client(service, token_provider=token_provider, allow_duplicates=True)

        result = client.submit("ORG", {"studyId": "ORG"})

        assert result == {"analysisId": "A1", "status": "OK"}
        request = service.requests[0]
        assert request.headers["Authorization"] == "Bearer token-1"
        assert request.url.params["allowDuplicates"] == "true"
        assert json.loads(request.content) == {"studyId": "ORG"}

    def test_submit_without_duplicates_flag(self):
        service = RecordingService({("POST", "/submit/ORG"): (200, {"analysisId": "A1", "status": "OK"})})
        _client(service).submit("ORG", {})

        assert "allowDuplicates" not in service.requests[0].url.params
        assert "Authorization" not in service.requests[0].headers

    def test_error_message_is_folded_into_exception(self):
        service = RecordingService({("POST", "/submit/ORG"): (400, {"message": "Sample S1 already exists"})})

        with pytest.raises(AnalysisServiceError) as exc_info:
            _client(service).submit("ORG", {})

        assert exc_info.value.http_status == 400
        assert "Sample S1 already exists" in exc_info.value.message

    def test_unauthorized_response_drops_cached_token(self):
        token_calls = []
        token_provider = TokenProvider(
            TOKEN_URL, "client", "secret",
            client=httpx.Client(transport=httpx.MockTransport(_token_handler(token_calls))),
        )
        service = RecordingService({("GET", "/studies/ORG/analysis/A1/files"): (401, {"message": "expired"})})
        client = _client(service, token_provider=token_provider)

        with pytest.raises(AnalysisServiceError):
            client.get_analysis_files("ORG", "A1")
        with pytest.raises(AnalysisServiceError):
            client.get_analysis_files("ORG", "A1")

        assert len(token_calls) == 2
        assert service.requests[1].headers["Authorization"] == "Bearer token-2"

    def test_submit_requires_analysis_id(self):
        service = RecordingService({("POST", "/submit/ORG"): (200, {"status": "OK"})})
        with pytest.raises(AnalysisServiceError):
            _client(service).submit("ORG", {})

    def test_read_and_state_change_paths(self):
        service = RecordingService({
            ("GET", "/studies/ORG/analysis/A1"): (200, {"analysisState": "PUBLISHED", "files": []}),
            ("GET", "/studies/ORG/analysis/A1/files"): (200, [{"objectId": "O1"}]),
            ("PUT", "/studies/ORG/analysis/publish/A1"): (200, {"message": "published"}),
            ("PUT", "/studies/ORG/analysis/suppress/A1"): (200, {"message": "suppressed"}),
        })
        client = _client(service)

        assert client.get_analysis_by_id("ORG", "A1")["analysisState"] == "PUBLISHED"
        assert client.get_analysis_files("ORG", "A1") == [{"objectId": "O1"}]
        client.publish_analysis("ORG", "A1")
        client.suppress_analysis("ORG", "A1")

        assert [(r.method, r.url.path) for r in service.requests][-2:] == [
            ("PUT", "/studies/ORG/analysis/publish/A1"),
            ("PUT", "/studies/ORG/analysis/suppress/A1"),
        ]

    def test_non_json_success_body_becomes_service_error(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>ok</html>"))
        client = AnalysisServiceClient(BASE_URL, client=httpx.Client(transport=transport))

        with pytest.raises(AnalysisServiceError) as exc_info:
            client.submit("ORG", {})
        assert exc_info.value.http_status == 200
        assert "Invalid JSON response" in exc_info.value.message

    def test_transport_error_becomes_service_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = AnalysisServiceClient(BASE_URL, client=httpx.Client(transport=httpx.MockTransport(handler)))
        with pytest.raises(AnalysisServiceError) as exc_info:
            client.get_analysis_files("ORG", "A1")
        assert "connection refused" in exc_info.value.message


class TestCreateAnalysisServiceClient:
    """Tests for the settings-based factory."""

    def test_disabled_returns_none(self, settings):
        assert create_analysis_service_client(settings) is None

    def test_enabled_builds_client(self):
        settings = get_settings_for_testing(
            sequencing_submission_enabled=True,
            sequencing_submission_url="http://analysis.test/",
            sequencing_submission_token_url=TOKEN_URL,
            sequencing_submission_client_id="client",
            sequencing_submission_client_secret="secret",
            sequencing_submission_allow_duplicates=True,
        )
        client = create_analysis_service_client(settings)

        assert client.base_url == "http://analysis.test"
        assert client.allow_duplicates is True
        assert client.token_provider.client_id == "client"
