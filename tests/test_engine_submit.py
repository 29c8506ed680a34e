"""HTTP submission: endpoint allow-list, JSON body, status handling."""

from __future__ import annotations

import json

import httpx
import pytest

from site_patrol.engine.submit import HttpSubmitter
from site_patrol.errors import SubmissionNetworkError, SubmissionValidationError
from site_patrol.models import ExtractionResult
from site_patrol.validation import is_allowed_endpoint, validate_endpoint

RESULT = ExtractionResult(
    target_id="t1",
    url="https://t1.example.test/",
    captured_at=1_760_000_000_000,
    payload={"balance": 42},
)


def test_submit_posts_full_result_as_json() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201)

    with HttpSubmitter("http://localhost:3000/collect", transport=httpx.MockTransport(handler)) as submitter:
        submitter.submit(RESULT)

    assert len(seen) == 1
    assert seen[0].method == "POST"
    assert str(seen[0].url) == "http://localhost:3000/collect"
    assert seen[0].headers["content-type"] == "application/json"
    assert json.loads(seen[0].content) == {
        "targetId": "t1",
        "url": "https://t1.example.test/",
        "capturedAt": 1_760_000_000_000,
        "payload": {"balance": 42},
    }


def test_non_2xx_response_is_a_network_failure() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(503))
    submitter = HttpSubmitter("https://collector.example.test/in", transport=transport)

    with pytest.raises(SubmissionNetworkError, match="API returned 503: Service Unavailable"):
        submitter.submit(RESULT)


def test_redirect_is_not_followed_and_fails() -> None:
    transport = httpx.MockTransport(
        lambda request: httpx.Response(302, headers={"location": "http://internal.test/"})
    )
    submitter = HttpSubmitter("https://collector.example.test/in", transport=transport)

    with pytest.raises(SubmissionNetworkError, match="302"):
        submitter.submit(RESULT)


def test_transport_error_is_a_network_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    submitter = HttpSubmitter("http://localhost:3000/collect", transport=httpx.MockTransport(handler))

    with pytest.raises(SubmissionNetworkError, match="Connection refused"):
        submitter.submit(RESULT)


def test_timeout_is_a_network_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    submitter = HttpSubmitter("http://localhost:3000/collect", timeout_seconds=7, transport=httpx.MockTransport(handler))

    with pytest.raises(SubmissionNetworkError, match="timed out after 7 seconds"):
        submitter.submit(RESULT)


@pytest.mark.parametrize(
    "endpoint",
    ["file:///etc/passwd", "ftp://collector.example.test/in", "javascript:alert(1)", "", "http://"],
)
def test_disallowed_endpoint_is_rejected_without_a_request(endpoint: str) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200)

    submitter = HttpSubmitter(endpoint, transport=httpx.MockTransport(handler))

    with pytest.raises(SubmissionValidationError):
        submitter.submit(RESULT)
    assert seen == []


def test_endpoint_helpers_accept_http_and_https() -> None:
    assert validate_endpoint(" https://collector.example.test/in ") == "https://collector.example.test/in"
    assert is_allowed_endpoint("HTTP://localhost:3000/collect")
    assert not is_allowed_endpoint("http://[::1")
