"""
Upstream Forwarding
===================

Builds the authenticated Jira request for a validated ProxyRequest, sends it
once, and classifies what happened into one ProxyOutcome variant.

Classification:
---------------
- 2xx from Jira                       -> ProxySuccess
- non-2xx from Jira (JSON or text)    -> UpstreamError
- non-2xx HTML page (CDN / WAF block) -> UpstreamError(html=True, request_id=...)
- sent, but no response in time       -> NoResponse
- could not be built / encoded        -> RequestSetupError
  (includes requests the client refuses to send, e.g. an illegal method)

No retries are attempted at any stage.
"""

import asyncio
import base64
import json
import logging
import re
from typing import Any, Dict, Optional

import httpx

from ..config import Settings
from ..models import (
    NoResponse,
    ProxyOutcome,
    ProxyRequest,
    ProxySuccess,
    RequestSetupError,
    UpstreamError,
)

logger = logging.getLogger(__name__)

JIRA_API_BASE_PATH = "/rest/api/3"

CLOUDFRONT_REQUEST_ID_PATTERN = re.compile(r"Request ID: ([^\s<]+)")


# ============================================================================
# Request Construction
# ============================================================================

def build_upstream_url(jira_domain: str, api_endpoint: str) -> str:
    """
    Join the Jira host and the caller's relative endpoint.

    The endpoint is appended as given: no slash collapsing, no percent-encoding.

    Example:
        >>> build_upstream_url("x.atlassian.net", "myself")
        'https://x.atlassian.net/rest/api/3/myself'
    """
    return f"https://{jira_domain}{JIRA_API_BASE_PATH}/{api_endpoint}"


def encode_basic_auth(email: str, token: str) -> str:
    """
    Build an RFC 7617 Basic credential for the Authorization header.

    Raises:
        UnicodeEncodeError: If the credentials cannot be encoded as UTF-8
    """
    raw = f"{email}:{token}".encode("utf-8")
    return "Basic " + base64.b64encode(raw).decode("ascii")


def build_upstream_headers(settings: Settings, authorization: str) -> Dict[str, str]:
    """
    Headers sent to Jira.

    Authorization, Content-Type and Accept are always present. User-Agent and
    Accept-Language make the relay look like an ordinary browser to Jira's
    edge and are left out when configured empty.
    """
    headers = {
        "Authorization": authorization,
        "Content-Type": "application/json",
        "Accept": "application/json",
    }

    if settings.UPSTREAM_USER_AGENT:
        headers["User-Agent"] = settings.UPSTREAM_USER_AGENT
    if settings.UPSTREAM_ACCEPT_LANGUAGE:
        headers["Accept-Language"] = settings.UPSTREAM_ACCEPT_LANGUAGE

    return headers


def build_upstream_request(
    client: httpx.AsyncClient,
    proxy_request: ProxyRequest,
    settings: Settings
) -> httpx.Request:
    """
    Assemble the outbound request without sending it.

    The inbound ``body`` is serialized as JSON verbatim; a null body sends no
    payload at all.
    """
    url = build_upstream_url(proxy_request.jiraDomain, proxy_request.jiraApiEndpoint)
    authorization = encode_basic_auth(proxy_request.jiraEmail, proxy_request.jiraToken)
    headers = build_upstream_headers(settings, authorization)

    content = None
    if proxy_request.body is not None:
        content = json.dumps(proxy_request.body).encode("utf-8")

    return client.build_request(
        proxy_request.method.upper(),
        url,
        content=content,
        headers=headers,
    )


# ============================================================================
# Response Inspection
# ============================================================================

def extract_cloudfront_request_id(html: Any) -> Optional[str]:
    """
    Best-effort scan of an HTML error page for a CloudFront "Request ID".

    Atlassian support asks for this id when their edge blocks a request.
    Anything that is not a string, or has no match, yields None.
    """
    if not isinstance(html, str):
        return None

    match = CLOUDFRONT_REQUEST_ID_PATTERN.search(html)
    if match:
        return match.group(1)
    return None


def read_response_body(response: httpx.Response) -> Any:
    """Decode a Jira response body: JSON when possible, text otherwise, None if empty."""
    if not response.content:
        return None

    try:
        return response.json()
    except ValueError:
        return response.text


def is_html_response(response: httpx.Response) -> bool:
    return "text/html" in response.headers.get("content-type", "").lower()


# ============================================================================
# Dispatch
# ============================================================================

async def dispatch(
    client: httpx.AsyncClient,
    proxy_request: ProxyRequest,
    settings: Settings
) -> ProxyOutcome:
    """
    Send one relayed request to Jira and classify the result.

    The whole exchange, body included, is bounded by
    ``settings.UPSTREAM_TIMEOUT_SECONDS``; the pending call is cancelled when
    the deadline passes.

    Args:
        client: Shared HTTP client for outbound calls
        proxy_request: Validated request description
        settings: Application settings

    Returns:
        Exactly one ProxyOutcome variant (never ValidationFailure)
    """
    method = proxy_request.method.upper()
    url = build_upstream_url(proxy_request.jiraDomain, proxy_request.jiraApiEndpoint)

    try:
        upstream_request = build_upstream_request(client, proxy_request, settings)
    except Exception as e:
        logger.error(
            f"Error setting up Jira request: {e}",
            extra={"method": method, "url": url}
        )
        return RequestSetupError(message=str(e))

    logger.info(f"Proxying request: {method} {url}")

    try:
        response = await asyncio.wait_for(
            client.send(upstream_request),
            timeout=settings.UPSTREAM_TIMEOUT_SECONDS
        )
    except asyncio.TimeoutError:
        logger.error(
            f"No response received from Jira for {method} {url}: "
            f"timed out after {settings.UPSTREAM_TIMEOUT_SECONDS}s"
        )
        return NoResponse(reason="timeout")
    except (httpx.LocalProtocolError, httpx.UnsupportedProtocol) as e:
        # Rejected by the client before anything reached the wire
        logger.error(
            f"Error setting up Jira request: {e}",
            extra={"method": method, "url": url, "exception_type": type(e).__name__}
        )
        return RequestSetupError(message=str(e))
    except httpx.RequestError as e:
        logger.error(
            f"No response received from Jira for {method} {url}: {e}",
            extra={"exception_type": type(e).__name__}
        )
        return NoResponse(reason=str(e) or type(e).__name__)

    data = read_response_body(response)

    if response.is_success:
        logger.info(f"Successfully proxied {method} {url} - Status: {response.status_code}")
        return ProxySuccess(status_code=response.status_code, data=data)

    logger.error(f"Error proxying to Jira for {method} {url}:")
    logger.error(f"Jira API Error Status: {response.status_code}")
    logger.error(f"Jira API Error Headers: {json.dumps(dict(response.headers), indent=2)}")
    data_string = data if isinstance(data, str) else json.dumps(data, indent=2)
    logger.error(f"Jira API Error Data: {data_string}")

    if is_html_response(response):
        logger.error(
            "Jira returned an HTML response, possibly due to WAF/auth issue "
            "(e.g., CloudFront block)."
        )
        request_id = extract_cloudfront_request_id(data)
        if request_id:
            logger.error(f"CloudFront Request ID: {request_id}")

        return UpstreamError(
            status_code=response.status_code,
            data=data,
            html=True,
            request_id=request_id,
        )

    return UpstreamError(status_code=response.status_code, data=data)
