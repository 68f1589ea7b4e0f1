"""SCIM User and Group representations and the request shapes that create them.

The dataclasses here are plain containers: they know how to read themselves
from an inbound JSON body and how to dump their fields to a dict, but they
carry no storage or serialization policy. Omitting empty collections from
responses is done by ScimTransformer.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from scim_provider.core.errors import ScimError

# Resource types are caseExact (RFC 7643 Section 3.1, "resourceType")
USER = "User"
GROUP = "Group"
RESOURCE_TYPES = (USER, GROUP)

# Values of a User's groups[].type (RFC 7643 Section 4.1.2)
DIRECT = "direct"
INDIRECT = "indirect"

PLACEHOLDER_VERSION = 'W/"unimplemented"'


def parse_resource_type(value: str) -> str:
    """Validate a member type string against the supported resource types."""
    if value not in RESOURCE_TYPES:
        raise ScimError.invalid_syntax(f"{value} not a valid resource type")
    return value


def member_key(value: Optional[str]) -> Optional[str]:
    """Identity of a member reference; member ids compare case-insensitively."""
    return value.casefold() if value is not None else None


def _optional_str(payload: dict, key: str) -> Optional[str]:
    value = payload.get(key)
    if value is not None and not isinstance(value, str):
        raise ScimError.invalid_value(f"{key} must be a string")
    return value


def _required_str(payload: dict, key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ScimError.invalid_value(f"{key} is required")
    return value


def _require_object(payload: Any, what: str) -> dict:
    if not isinstance(payload, dict):
        raise ScimError.invalid_syntax(f"{what} must be a JSON object")
    return payload


# ─────────────────────────────────────────────────────────────────────────────
# Groups
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class GroupMember:
    """One entry of a Group's members attribute."""
    value: Optional[str] = None
    type: Optional[str] = None

    @property
    def key(self) -> Optional[str]:
        return member_key(self.value)

    @classmethod
    def from_dict(cls, payload: Any) -> "GroupMember":
        payload = _require_object(payload, "group member")
        return cls(value=_optional_str(payload, "value"), type=_optional_str(payload, "type"))

    def to_dict(self) -> dict:
        return {"type": self.type, "value": self.value}


@dataclass
class Group:
    id: str
    display_name: str
    external_id: Optional[str] = None
    members: Optional[list[GroupMember]] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "displayName": self.display_name,
            "externalId": self.external_id,
            "members": [member.to_dict() for member in self.members or []],
        }


@dataclass
class CreateGroupRequest:
    """Body of POST /Groups and PUT /Groups/{id}."""
    display_name: str
    external_id: Optional[str] = None
    members: Optional[list[GroupMember]] = None

    @classmethod
    def from_dict(cls, payload: Any) -> "CreateGroupRequest":
        payload = _require_object(payload, "request body")

        members = payload.get("members")
        if members is not None:
            if not isinstance(members, list):
                raise ScimError.invalid_syntax("members must be an array")
            members = [GroupMember.from_dict(member) for member in members]

        return cls(
            display_name=_required_str(payload, "displayName"),
            external_id=_optional_str(payload, "externalId"),
            members=members,
        )


# ─────────────────────────────────────────────────────────────────────────────
# Users
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class UserGroup:
    """One entry of a User's (derived, readOnly) groups attribute."""
    value: str
    display: Optional[str] = None
    type: str = DIRECT

    def to_dict(self) -> dict:
        return {"type": self.type, "value": self.value, "display": self.display}


@dataclass
class User:
    id: str
    user_name: str
    active: Optional[bool] = None
    external_id: Optional[str] = None
    groups: Optional[list[UserGroup]] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userName": self.user_name,
            "active": self.active,
            "externalId": self.external_id,
            "groups": [group.to_dict() for group in self.groups or []],
        }


@dataclass
class CreateUserRequest:
    """Body of POST /Users and PUT /Users/{id}.

    `groups` is kept only so the Provider can reject a client that tries to
    assert it; stores never read it.
    """
    user_name: str
    active: Optional[bool] = None
    external_id: Optional[str] = None
    groups: Optional[list] = None

    @classmethod
    def from_dict(cls, payload: Any) -> "CreateUserRequest":
        payload = _require_object(payload, "request body")

        active = payload.get("active")
        if active is not None and not isinstance(active, bool):
            raise ScimError.invalid_value("active must be a boolean")

        groups = payload.get("groups")
        if groups is not None and not isinstance(groups, list):
            raise ScimError.invalid_syntax("groups must be an array")

        return cls(
            user_name=_required_str(payload, "userName"),
            active=active,
            external_id=_optional_str(payload, "externalId"),
            groups=groups,
        )


# ─────────────────────────────────────────────────────────────────────────────
# Stored metadata
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class StoredMeta:
    created: datetime
    last_modified: datetime
    version: str = PLACEHOLDER_VERSION


@dataclass
class StoredParts:
    """A resource (User or Group) together with its server-side metadata."""
    resource: Any
    meta: StoredMeta = field(repr=False)
