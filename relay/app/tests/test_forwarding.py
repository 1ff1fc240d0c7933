"""
Unit Tests for Upstream Forwarding
==================================

Tests for relay/app/proxy/forwarding.py

Test Coverage:
--------------
1. URL and credential construction helpers
2. CloudFront request id extraction
3. dispatch() classification against a stubbed Jira (respx)

Run tests:
----------
    pytest relay/app/tests/test_forwarding.py -v
"""

import base64

import httpx
import pytest
from respx import MockRouter

from relay.app.config import Settings
from relay.app.models import (
    NoResponse,
    ProxyRequest,
    ProxySuccess,
    RequestSetupError,
    UpstreamError,
)
from relay.app.proxy.forwarding import (
    build_upstream_headers,
    build_upstream_url,
    dispatch,
    encode_basic_auth,
    extract_cloudfront_request_id,
)

JIRA_URL = "https://acme.atlassian.net/rest/api/3/issue/DES-7"


@pytest.fixture
def settings():
    return Settings(UPSTREAM_TIMEOUT_SECONDS=5.0)


@pytest.fixture
def proxy_request():
    return ProxyRequest(
        jiraDomain="acme.atlassian.net",
        jiraEmail="designer@acme.com",
        jiraToken="ATATT3xFfGF0",
        jiraApiEndpoint="issue/DES-7",
        method="get",
    )


@pytest.fixture
async def http_client():
    """Real httpx client for respx mocking."""
    async with httpx.AsyncClient() as client:
        yield client


# ============================================================================
# Construction Helpers
# ============================================================================

def test_build_upstream_url():
    assert build_upstream_url("x.atlassian.net", "myself") == "https://x.atlassian.net/rest/api/3/myself"


def test_build_upstream_url_keeps_slashes():
    """Duplicate slashes are the caller's responsibility"""
    assert build_upstream_url("x.atlassian.net", "/myself") == "https://x.atlassian.net/rest/api/3//myself"


def test_encode_basic_auth():
    expected = "Basic " + base64.b64encode(b"a@b.com:t").decode()
    assert encode_basic_auth("a@b.com", "t") == expected


def test_encode_basic_auth_utf8():
    """Non-ASCII credentials are encoded as UTF-8 before base64"""
    encoded = encode_basic_auth("zoë@acme.com", "tökén")
    decoded = base64.b64decode(encoded.removeprefix("Basic ")).decode("utf-8")
    assert decoded == "zoë@acme.com:tökén"


def test_encode_basic_auth_rejects_surrogates():
    with pytest.raises(UnicodeEncodeError):
        encode_basic_auth("a@b.com", "\ud800")


def test_build_upstream_headers_exact_set():
    headers = build_upstream_headers(
        Settings(UPSTREAM_USER_AGENT="", UPSTREAM_ACCEPT_LANGUAGE=""),
        "Basic abc"
    )
    assert headers == {
        "Authorization": "Basic abc",
        "Content-Type": "application/json",
        "Accept": "application/json",
    }


# ============================================================================
# Request ID Extraction
# ============================================================================

@pytest.mark.parametrize(
    "html, expected",
    [
        ("<p>Request ID: ABC123</p>", "ABC123"),
        ("Request ID: Zq9-vX_1a==\n<hr>", "Zq9-vX_1a=="),
        ("<html><body>Forbidden</body></html>", None),
        ("", None),
        (None, None),
        ({"errorMessages": []}, None),
    ],
)
def test_extract_cloudfront_request_id(html, expected):
    assert extract_cloudfront_request_id(html) == expected


# ============================================================================
# Dispatch Classification
# ============================================================================

@pytest.mark.asyncio
async def test_dispatch_success(http_client, proxy_request, settings, respx_mock: MockRouter):
    issue = {"id": "10042", "key": "DES-7", "fields": {"summary": "Align icons"}}
    route = respx_mock.get(JIRA_URL).mock(return_value=httpx.Response(200, json=issue))

    outcome = await dispatch(http_client, proxy_request, settings)

    assert outcome == ProxySuccess(status_code=200, data=issue)
    assert route.calls.last.request.headers["Authorization"] == encode_basic_auth(
        "designer@acme.com", "ATATT3xFfGF0"
    )


@pytest.mark.asyncio
async def test_dispatch_json_error(http_client, proxy_request, settings, respx_mock: MockRouter):
    error = {"errorMessages": ["Issue does not exist"], "errors": {}}
    respx_mock.get(JIRA_URL).mock(return_value=httpx.Response(404, json=error))

    outcome = await dispatch(http_client, proxy_request, settings)

    assert isinstance(outcome, UpstreamError)
    assert outcome.status_code == 404
    assert outcome.data == error
    assert outcome.html is False


@pytest.mark.asyncio
async def test_dispatch_html_error(http_client, proxy_request, settings, respx_mock: MockRouter):
    respx_mock.get(JIRA_URL).mock(
        return_value=httpx.Response(
            403,
            html="<html><body>Request blocked. Request ID: q1W2e3R4==</body></html>",
        )
    )

    outcome = await dispatch(http_client, proxy_request, settings)

    assert isinstance(outcome, UpstreamError)
    assert outcome.html is True
    assert outcome.request_id == "q1W2e3R4=="


@pytest.mark.asyncio
async def test_dispatch_connect_error(http_client, proxy_request, settings, respx_mock: MockRouter):
    respx_mock.get(JIRA_URL).mock(side_effect=httpx.ConnectError("connection refused"))

    outcome = await dispatch(http_client, proxy_request, settings)

    assert isinstance(outcome, NoResponse)


@pytest.mark.asyncio
async def test_dispatch_local_protocol_error(http_client, proxy_request, settings, respx_mock: MockRouter):
    """A request the client refuses to write is a setup error, not a timeout"""
    respx_mock.get(JIRA_URL).mock(side_effect=httpx.LocalProtocolError("Illegal method"))

    outcome = await dispatch(http_client, proxy_request, settings)

    assert isinstance(outcome, RequestSetupError)
    assert outcome.message == "Illegal method"


@pytest.mark.asyncio
async def test_dispatch_setup_error_skips_network(http_client, settings, respx_mock: MockRouter):
    """Credentials that cannot be encoded never reach the network"""
    proxy_request = ProxyRequest.model_construct(
        jiraDomain="acme.atlassian.net",
        jiraEmail="designer@acme.com",
        jiraToken="\ud800",
        jiraApiEndpoint="myself",
        method="GET",
        body=None,
    )

    outcome = await dispatch(http_client, proxy_request, settings)

    assert isinstance(outcome, RequestSetupError)
    assert "surrogates not allowed" in outcome.message
    assert len(respx_mock.calls) == 0


@pytest.mark.asyncio
async def test_dispatch_posts_json_body(http_client, proxy_request, settings, respx_mock: MockRouter):
    comment = {"body": {"type": "doc", "version": 1, "content": []}}
    proxy_request.method = "POST"
    proxy_request.jiraApiEndpoint = "issue/DES-7/comment"
    proxy_request.body = comment
    route = respx_mock.post(f"{JIRA_URL}/comment").mock(
        return_value=httpx.Response(201, json={"id": "100"})
    )

    outcome = await dispatch(http_client, proxy_request, settings)

    assert outcome == ProxySuccess(status_code=201, data={"id": "100"})
    assert route.calls.last.request.content == b'{"body": {"type": "doc", "version": 1, "content": []}}'
