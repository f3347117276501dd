"""
API request and response models for the Inbook frontend server.

These Pydantic v2 models define the HTTP transport contract of the server's
own endpoints. They are intentionally separate from the dataclasses in
core/models.py, which own the client's domain representation.

Separation of concerns: core/ models = domain truth; api/ models = API contract.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Response for GET /healthz."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    backend_url: str


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses of the server's own routes."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


# ---------------------------------------------------------------------------
# Backend envelope
# ---------------------------------------------------------------------------


class ApiEnvelope(BaseModel):
    """The backend's {success, message, data} envelope.

    The proxy answers in this shape when it cannot reach the backend, so the
    browser sees the same schema it gets from a real backend failure.
    """

    success: bool
    message: Optional[str] = None
    data: Optional[Any] = None
    error: Optional[str] = None
