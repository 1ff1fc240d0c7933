"""
Data Models Module

This module defines Pydantic models for the relay's request and outcome
shapes.

Models are organized by functional area:
- Proxy request model (the JSON body a plugin posts to /api/jira-proxy)
- Proxy outcome models (closed set of results of one upstream dispatch)
- System models (liveness / health responses)
"""

from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


REQUIRED_FIELDS = ("jiraDomain", "jiraEmail", "jiraToken", "jiraApiEndpoint", "method")


# ============================================================================
# Proxy Request Model
# ============================================================================

class ProxyRequest(BaseModel):
    """
    Description of one Jira REST call the caller wants relayed.

    Every field is optional at the schema level so that a missing field is
    reported with the relay's own 400 body instead of a 422.
    """

    model_config = ConfigDict(extra="ignore")

    jiraDomain: Optional[str] = Field(None, description="Jira host, e.g. acme.atlassian.net")
    jiraEmail: Optional[str] = Field(None, description="Atlassian account email")
    jiraToken: Optional[str] = Field(None, description="Atlassian API token")
    jiraApiEndpoint: Optional[str] = Field(None, description="Path relative to /rest/api/3")
    method: Optional[str] = Field(None, description="HTTP verb, case-insensitive")
    body: Any = Field(None, description="JSON payload forwarded unmodified")

    def missing_fields(self) -> List[str]:
        """Names of required fields that are absent or empty."""
        return [name for name in REQUIRED_FIELDS if not getattr(self, name)]


# ============================================================================
# Proxy Outcome Models
# ============================================================================

class ProxySuccess(BaseModel):
    """Jira answered with a 2xx status."""
    kind: Literal["success"] = "success"
    status_code: int
    data: Any = None


class UpstreamError(BaseModel):
    """Jira (or its CDN edge) answered with a non-2xx status."""
    kind: Literal["upstream_error"] = "upstream_error"
    status_code: Optional[int] = None
    data: Any = None
    html: bool = Field(False, description="Body was an HTML page, not Jira JSON")
    request_id: Optional[str] = Field(None, description="CloudFront request id found in the HTML")


class NoResponse(BaseModel):
    """The request went out but nothing came back in time."""
    kind: Literal["no_response"] = "no_response"
    reason: str


class RequestSetupError(BaseModel):
    """The outbound request could not be built or sent."""
    kind: Literal["request_setup_error"] = "request_setup_error"
    message: str


class ValidationFailure(BaseModel):
    kind: Literal["validation_error"] = "validation_error"
    missing: List[str] = Field(default_factory=list)


ProxyOutcome = Annotated[
    Union[ProxySuccess, UpstreamError, NoResponse, RequestSetupError, ValidationFailure],
    Field(discriminator="kind"),
]


# ============================================================================
# System Models
# ============================================================================

class StatusResponse(BaseModel):
    """Liveness probe response."""
    message: str
    status: str = "OK"


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
