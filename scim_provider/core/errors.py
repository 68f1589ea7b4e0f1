"""SCIM error taxonomy (RFC 7644 Section 3.12).

Three families of errors flow through the core:

    ScimError         : protocol errors, safe to return to the client verbatim
    StoreError        : backend-internal failures, never shown to the client
    PatchRequestError : Patch Engine failures, mapped to ScimError at the
                        Provider boundary (Invalid -> 400, Unsupported -> 501)
"""
from __future__ import annotations
from typing import Optional

from scim_provider.core.urn import ERROR_URN


# scimType values used by this service (RFC 7644 Table 9)
INVALID_FILTER = "invalidFilter"
UNIQUENESS = "uniqueness"
INVALID_SYNTAX = "invalidSyntax"
INVALID_VALUE = "invalidValue"
MUTABILITY = "mutability"
UNAUTHORIZED = "unauthorized"


class ScimError(Exception):
    """SCIM protocol error with HTTP status and optional scimType."""

    def __init__(self, status: int, detail: str, scim_type: Optional[str] = None):
        self.status = status
        self.detail = detail
        self.scim_type = scim_type
        super().__init__(detail)

    def __repr__(self) -> str:
        return f"ScimError(status={self.status}, scim_type={self.scim_type!r}, detail={self.detail!r})"

    def __eq__(self, other) -> bool:
        if not isinstance(other, ScimError):
            return NotImplemented
        return (self.status, self.detail, self.scim_type) == (other.status, other.detail, other.scim_type)

    __hash__ = Exception.__hash__

    def to_dict(self) -> dict:
        """Convert to SCIM error response format."""
        error_dict = {
            "schemas": [ERROR_URN],
            "status": str(self.status),
            "detail": self.detail,
        }
        if self.scim_type:
            error_dict["scimType"] = self.scim_type
        return error_dict

    # ─────────────────────────────────────────────────────────────────────
    # Factories
    # ─────────────────────────────────────────────────────────────────────

    @classmethod
    def not_found(cls, resource_id: str) -> "ScimError":
        return cls(404, f"Resource {resource_id} not found")

    @classmethod
    def conflict(cls, identifier: str) -> "ScimError":
        return cls(409, f"Resource matching {identifier} exists already", UNIQUENESS)

    @classmethod
    def invalid_filter(cls, detail: str) -> "ScimError":
        return cls(400, detail, INVALID_FILTER)

    @classmethod
    def invalid_syntax(cls, detail: str) -> "ScimError":
        return cls(400, detail, INVALID_SYNTAX)

    @classmethod
    def invalid_value(cls, detail: str) -> "ScimError":
        return cls(400, detail, INVALID_VALUE)

    @classmethod
    def mutability(cls, detail: str) -> "ScimError":
        return cls(400, detail, MUTABILITY)

    @classmethod
    def not_implemented(cls, detail: str) -> "ScimError":
        return cls(501, detail)

    @classmethod
    def internal_error(cls, detail: str) -> "ScimError":
        return cls(500, detail)


class StoreError(Exception):
    """Backend-internal failure raised by a ProviderStore implementation."""


class PatchRequestError(Exception):
    """Base class for Patch Engine failures."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)

    def to_scim_error(self) -> ScimError:
        raise NotImplementedError


class PatchInvalid(PatchRequestError):
    """Malformed operation shape, wrong target id, or unsupported path syntax."""

    def to_scim_error(self) -> ScimError:
        return ScimError.invalid_syntax(self.reason)


class PatchUnsupported(PatchRequestError):
    """Operation type or target attribute not implemented."""

    def to_scim_error(self) -> ScimError:
        return ScimError.not_implemented(self.reason)
