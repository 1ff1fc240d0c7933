"""
Proxy Routes - Jira Request Relay
=================================

This module implements the single relay endpoint used by the Figma plugin.
The plugin posts a description of a Jira REST call (host, credentials,
endpoint, method, body); the relay performs it with Basic authentication and
hands back Jira's answer or a normalized error.

Response Mapping:
-----------------
- ValidationFailure -> 400 {"error": "Missing required fields: ..."}
- ProxySuccess      -> Jira status, Jira body unchanged
- UpstreamError     -> Jira status, {"error", "jiraErrorStatus", "jiraErrorData"}
- UpstreamError/HTML-> Jira status (502 if absent), {"error", "jiraHtmlError", "cloudfrontRequestId"}
- NoResponse        -> 504 {"error": "No response received from Jira (Gateway Timeout)."}
- RequestSetupError -> 500 {"error": "Proxy internal error: ..."}

Jira statuses that forbid a body (204, 205, 304) are relayed bodyless.

Endpoints:
----------
- POST /api/jira-proxy: Relay one call to Jira
"""

import logging
from typing import Any, Optional, Tuple

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError
from slowapi import Limiter
import httpx

from ..config import Settings
from ..models import (
    REQUIRED_FIELDS,
    NoResponse,
    ProxyOutcome,
    ProxyRequest,
    ProxySuccess,
    RequestSetupError,
    UpstreamError,
    ValidationFailure,
)
from .forwarding import dispatch

logger = logging.getLogger(__name__)

MISSING_FIELDS_MESSAGE = "Missing required fields: " + ", ".join(REQUIRED_FIELDS)
JIRA_API_ERROR_MESSAGE = "Error from Jira API."
JIRA_HTML_ERROR_MESSAGE = (
    "Error connecting to Jira API. Jira returned an unexpected HTML response "
    "(possibly blocked by CloudFront)."
)
NO_RESPONSE_MESSAGE = "No response received from Jira (Gateway Timeout)."
UPSTREAM_UNAVAILABLE_MESSAGE = "Proxy is not ready to reach Jira."

# Statuses that must not carry a body
BODYLESS_STATUSES = {204, 205, 304}


# ============================================================================
# Dependencies
# ============================================================================

def get_app_settings(request: Request) -> Settings:
    """Settings the application was created with."""
    return request.app.state.settings


def get_upstream_client(request: Request) -> Optional[httpx.AsyncClient]:
    """
    Get the outbound HTTP client from app state.

    Args:
        request: FastAPI request object

    Returns:
        Shared httpx.AsyncClient used for Jira calls, or None before startup
    """
    app_state = getattr(request.app.state, "app_state", None)
    if app_state is None:
        return None

    return app_state.upstream_client


# ============================================================================
# Request Parsing
# ============================================================================

async def read_proxy_request(
    request: Request
) -> Tuple[Optional[ProxyRequest], Optional[ValidationFailure]]:
    """
    Parse and validate the inbound JSON body.

    Returns:
        (ProxyRequest, None) when every required field is present and truthy,
        otherwise (None, ValidationFailure).
    """
    try:
        raw: Any = await request.json()
    except ValueError:
        raw = None

    if not isinstance(raw, dict):
        return None, ValidationFailure(missing=list(REQUIRED_FIELDS))

    try:
        proxy_request = ProxyRequest.model_validate(raw)
    except ValidationError as e:
        invalid = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
        return None, ValidationFailure(missing=invalid)

    missing = proxy_request.missing_fields()
    if missing:
        return None, ValidationFailure(missing=missing)

    return proxy_request, None


# ============================================================================
# Outcome Rendering
# ============================================================================

def render_outcome(outcome: ProxyOutcome) -> Response:
    """
    Turn a ProxyOutcome into the single HTTP response sent to the caller.
    """
    if isinstance(outcome, ProxySuccess):
        if outcome.status_code in BODYLESS_STATUSES:
            return Response(status_code=outcome.status_code)
        return JSONResponse(status_code=outcome.status_code, content=outcome.data)

    if isinstance(outcome, UpstreamError):
        if outcome.status_code in BODYLESS_STATUSES:
            return Response(status_code=outcome.status_code)
        if outcome.html:
            return JSONResponse(
                status_code=outcome.status_code or status.HTTP_502_BAD_GATEWAY,
                content={
                    "error": JIRA_HTML_ERROR_MESSAGE,
                    "jiraHtmlError": True,
                    "cloudfrontRequestId": outcome.request_id,
                }
            )
        return JSONResponse(
            status_code=outcome.status_code or status.HTTP_502_BAD_GATEWAY,
            content={
                "error": JIRA_API_ERROR_MESSAGE,
                "jiraErrorStatus": outcome.status_code,
                "jiraErrorData": outcome.data,
            }
        )

    if isinstance(outcome, NoResponse):
        return JSONResponse(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            content={"error": NO_RESPONSE_MESSAGE}
        )

    if isinstance(outcome, RequestSetupError):
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": f"Proxy internal error: {outcome.message}"}
        )

    if isinstance(outcome, ValidationFailure):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": MISSING_FIELDS_MESSAGE}
        )

    raise TypeError(f"Unknown proxy outcome: {outcome!r}")


# ============================================================================
# Proxy Endpoints
# ============================================================================

def build_proxy_router(limiter: Limiter, rate_limit: str) -> APIRouter:
    """
    Create the relay router with its per-IP rate limit.

    Args:
        limiter: The application's Limiter (counters are per instance)
        rate_limit: Limit string such as "200 per 15 minutes"

    Returns:
        APIRouter exposing POST /jira-proxy
    """
    router = APIRouter()

    @router.post("/jira-proxy")
    @limiter.limit(rate_limit)
    async def jira_proxy(
        request: Request,
        settings: Settings = Depends(get_app_settings)
    ) -> Response:
        """
        Relay one Jira REST call on behalf of the plugin.

        Flow:
        1. Parse the JSON body and check the five required fields
        2. Build the Jira URL and Basic Authorization header
        3. Send the request once, bounded by the configured timeout
        4. Map the outcome to a single JSON response

        Returns:
            Jira's response on success, otherwise a normalized error body
        """
        proxy_request, failure = await read_proxy_request(request)
        if failure is not None:
            # Log field names only; the body carries credentials
            logger.warning(
                "Proxy request missing required fields",
                extra={"missing_fields": failure.missing}
            )
            return render_outcome(failure)

        upstream_client = get_upstream_client(request)
        if upstream_client is None:
            logger.error("Upstream client not available; was the lifespan run?")
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"error": UPSTREAM_UNAVAILABLE_MESSAGE}
            )

        outcome = await dispatch(upstream_client, proxy_request, settings)
        return render_outcome(outcome)

    return router
