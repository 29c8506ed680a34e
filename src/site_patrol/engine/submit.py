"""Ship extraction results to the collection endpoint."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from site_patrol.errors import SubmissionNetworkError
from site_patrol.models import ExtractionResult
from site_patrol.validation import validate_endpoint

logger = logging.getLogger(__name__)

USER_AGENT = "site-patrol/0.1"


class Submitter(Protocol):
    def submit(self, result: ExtractionResult) -> None:
        """Deliver one extraction result; raise a ``RunFailure`` on rejection."""


class HttpSubmitter:
    """POST extraction results as JSON; one attempt, no retries."""

    def __init__(
        self,
        endpoint: str,
        *,
        timeout_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.timeout_seconds,
                follow_redirects=False,
                transport=self._transport,
                headers={"User-Agent": USER_AGENT},
            )
        return self._client

    def submit(self, result: ExtractionResult) -> None:
        # Re-checked per call; the endpoint may come from an edited config.
        endpoint = validate_endpoint(self.endpoint)
        body: dict[str, Any] = result.to_submission()
        try:
            response = self._get_client().post(endpoint, json=body)
        except httpx.TimeoutException as exc:
            raise SubmissionNetworkError(f"Submission timed out after {self.timeout_seconds:g} seconds") from exc
        except httpx.HTTPError as exc:
            raise SubmissionNetworkError(f"Submission failed: {exc}") from exc

        if not response.is_success:
            raise SubmissionNetworkError(f"API returned {response.status_code}: {response.reason_phrase}")
        logger.debug("Submitted result for '%s' (HTTP %s)", result.target_id, response.status_code)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> HttpSubmitter:
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()
