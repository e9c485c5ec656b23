"""
Response envelopes shared by every router.

Successful calls return ``{"data": ...}`` (plus ``page`` for listings);
failures return an RFC 7807 problem document built by the error middleware.
"""

from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class ErrorDetail(BaseModel):
    """One offending request field."""

    code: str = Field(description="Error code, same as the problem's code")
    message: str
    field: str | None = Field(default=None, description="Request field, e.g. 'recurring_pattern'")


class ProblemDetail(BaseModel):
    """RFC 7807 problem document.

    Codes:
        - ``VALIDATION_FAILED`` (400): Schedule request rejected
        - ``INVALID_INPUT`` (400): Payload could not be decoded
        - ``NOT_FOUND`` (404): Unknown deployment or task run
        - ``CONFLICT`` (409): Status or progress change not allowed now
        - ``UNAVAILABLE`` / ``TRANSIENT`` (503): Store or transport down, retry
        - ``INTERNAL`` (500): Anything else

    Example:
        {
            "type": "about:blank",
            "title": "DeploymentNotFound",
            "status": 404,
            "code": "NOT_FOUND",
            "detail": "Deployment not found: d-123",
            "instance": "http://testserver/api/deployments/d-123",
            "errors": []
        }
    """

    type: str = "about:blank"
    title: str = Field(description="Error class name")
    status: int
    code: str = "INTERNAL"
    detail: str = ""
    instance: str = Field(default="", description="Request URL")
    errors: list[ErrorDetail] = Field(default_factory=list)


class PageMeta(BaseModel):
    """Where a page sits in the full result."""

    total: int
    limit: int
    offset: int
    has_more: bool

    @classmethod
    def from_result(cls, total: int, limit: int, offset: int) -> PageMeta:
        return cls(total=total, limit=limit, offset=offset, has_more=offset + limit < total)


class SuccessResponse(BaseModel, Generic[T]):
    data: T


class PagedResponse(BaseModel, Generic[T]):
    data: list[T]
    page: PageMeta
