"""HTTP client for the analysis registration service.

The analysis service registers sequencing file analyses and assigns the
permanent object ids listed in submission manifests. Requests carry a bearer
token obtained with an OAuth2 client-credentials grant; the token is cached
and renewed shortly before it expires.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

import httpx

from subgate.config import Settings
from subgate.exceptions import AnalysisServiceError

LOGGER = logging.getLogger("subgate.analysis_service")

# Renew the cached token this many seconds before it expires
TOKEN_RENEWAL_MARGIN_SECONDS = 5.0

ANALYSIS_STATE_PUBLISHED = "PUBLISHED"


def _error_message(response: httpx.Response) -> str:
    """Fold the service's JSON ``message`` (best effort) into an error text."""
    detail = ""
    try:
        body = response.json()
        if isinstance(body, dict):
            detail = str(body.get("message") or "")
    except ValueError:
        detail = response.text[:500]
    text = f"Request failed: {response.status_code} {response.reason_phrase}"
    return f"{text} - {detail}" if detail else text


class TokenProvider:
    """Client-credentials bearer token with in-memory caching."""

    def __init__(
        self,
        token_url: Optional[str],
        client_id: Optional[str],
        client_secret: Optional[str],
        client: Optional[httpx.Client] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.client = client or httpx.Client(timeout=10.0)
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: float = 0.0
        self._lock = threading.Lock()

    def invalidate(self) -> None:
        """Drop the cached token so the next call fetches a new one."""
        with self._lock:
            self._token = None
            self._expires_at = 0.0

    def get_token(self) -> str:
        """Return a valid access token, fetching a new one when needed.

        Raises:
            AnalysisServiceError: If credentials are missing or the grant fails
        """
        with self._lock:
            if self._token and self._clock() < self._expires_at:
                return self._token

            if not self.token_url or not self.client_id or not self.client_secret:
                raise AnalysisServiceError("CLIENT_ID or CLIENT_SECRET not set in environment variables.")

            try:
                response = self.client.post(
                    self.token_url,
                    data={
                        "grant_type": "client_credentials",
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                    },
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
            except httpx.HTTPError as e:
                raise AnalysisServiceError(f"Failed to get access token: {e}") from e

            if not response.is_success:
                raise AnalysisServiceError(
                    f"Failed to get access token: {_error_message(response)}",
                    http_status=response.status_code,
                )

            try:
                token_data = response.json()
            except ValueError as e:
                raise AnalysisServiceError(f"Failed to get access token: invalid JSON response: {e}") from e
            token = token_data.get("access_token") if isinstance(token_data, dict) else None
            if not token:
                raise AnalysisServiceError("Failed to retrieve access token")

            expires_in = float(token_data.get("expires_in") or 0)
            self._token = token
            self._expires_at = self._clock() + expires_in - TOKEN_RENEWAL_MARGIN_SECONDS
            LOGGER.debug("Fetched analysis service token (expires in %ss)", expires_in)
            return token


class AnalysisServiceClient:
    """Thin wrapper over the analysis service REST API."""

    def __init__(
        self,
        base_url: str,
        token_provider: Optional[TokenProvider] = None,
        allow_duplicates: bool = False,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Analysis service base URL
            token_provider: Bearer token source (None sends no Authorization header)
            allow_duplicates: Pass ``allowDuplicates=true`` on submit
            timeout: Request timeout in seconds
            client: Optional preconfigured httpx client
        """
        self.base_url = base_url.rstrip("/")
        self.token_provider = token_provider
        self.allow_duplicates = allow_duplicates
        self.client = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "AnalysisServiceClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs) -> Any:
        headers = dict(kwargs.pop("headers", {}) or {})
        if self.token_provider is not None:
            headers["Authorization"] = f"Bearer {self.token_provider.get_token()}"

        url = f"{self.base_url}{path}"
        try:
            response = self.client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            LOGGER.error("Analysis service %s %s failed: %s", method, url, str(e))
            raise AnalysisServiceError(f"Request failed: {e}") from e

        if response.status_code == 401 and self.token_provider is not None:
            self.token_provider.invalidate()

        if not response.is_success:
            message = _error_message(response)
            LOGGER.error("Analysis service %s %s returned %s", method, url, response.status_code)
            raise AnalysisServiceError(message, http_status=response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            LOGGER.error("Analysis service %s %s returned a non-JSON body", method, url)
            raise AnalysisServiceError(
                f"Invalid JSON response: {e}", http_status=response.status_code
            ) from e

    def submit(self, organization: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Submit one analysis payload.

        Returns:
            The service response, ``{"analysisId": ..., "status": ...}``
        """
        params = {"allowDuplicates": "true"} if self.allow_duplicates else None
        result = self._request("POST", f"/submit/{organization}", json=payload, params=params)
        if not isinstance(result, dict) or not result.get("analysisId"):
            raise AnalysisServiceError(f"Unexpected submit response: {result!r}")
        return result

    def get_analysis_by_id(self, organization: str, analysis_id: str) -> Dict[str, Any]:
        """Fetch an analysis record (``analysisState``, ``files``...)."""
        return self._request("GET", f"/studies/{organization}/analysis/{analysis_id}") or {}

    def get_analysis_files(self, organization: str, analysis_id: str) -> List[Dict[str, Any]]:
        """Fetch the file records of an analysis."""
        return self._request("GET", f"/studies/{organization}/analysis/{analysis_id}/files") or []

    def publish_analysis(self, organization: str, analysis_id: str) -> Any:
        """Publish an analysis whose files have been uploaded."""
        return self._request("PUT", f"/studies/{organization}/analysis/publish/{analysis_id}")

    def suppress_analysis(self, organization: str, analysis_id: str) -> Any:
        """Suppress an analysis; used to undo a submission."""
        return self._request("PUT", f"/studies/{organization}/analysis/suppress/{analysis_id}")


def create_analysis_service_client(settings: Settings) -> Optional[AnalysisServiceClient]:
    """Build the client from settings, or None when sequencing is disabled."""
    if not settings.sequencing_submission_enabled or not settings.sequencing_submission_url:
        return None

    token_provider = None
    if settings.sequencing_submission_token_url:
        token_provider = TokenProvider(
            token_url=settings.sequencing_submission_token_url,
            client_id=settings.sequencing_submission_client_id,
            client_secret=settings.sequencing_submission_client_secret,
        )
    LOGGER.info("Analysis service client bound to %s", settings.sequencing_submission_url)
    return AnalysisServiceClient(
        base_url=settings.sequencing_submission_url,
        token_provider=token_provider,
        allow_duplicates=settings.sequencing_submission_allow_duplicates,
        timeout=settings.analysis_service_timeout_seconds,
    )
