"""SCIM PATCH engine (RFC 7644 Section 3.5.2).

Decoding happens in two steps. PatchRequest.from_dict checks the envelope
and reads every element of Operations into an Operation (op kind, raw path,
raw value). The path grammar depends on the target, so each apply_* method
then decodes every Operation for its resource type before applying any.

Groups decode into these typed operations:

    ReplaceScalar   replace without a path: partial object of top-level fields
    ReplaceMembers  replace with path "members": new member set
    AddMembers      add with path "members": upsert member stubs
    RemoveAll       remove with path "members"
    RemoveOne       remove with path members[value eq "<id>"]

Users support replace only, whatever the path; add and remove are
unsupported (501) rather than malformed.

Anything that does not decode is rejected before any operation runs. The
apply_* methods then fold the operations, in array order, over a deep copy
of the stored resource; the caller commits the returned copy only if every
operation succeeded, so a failing PATCH never leaves a partial update behind.
An empty Operations array changes nothing.

Usage:
    request = PatchRequest.from_dict(body)
    updated = request.apply_group_ops(stored_group)
"""
from __future__ import annotations
import copy
import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from scim_provider.core.errors import PatchInvalid, PatchUnsupported
from scim_provider.core.models import USER, Group, GroupMember, StoredParts, member_key
from scim_provider.core.query_params import unquote
from scim_provider.core.urn import PATCHOP_URN

logger = logging.getLogger(__name__)

MEMBERS_PATH = "members"
ACTIVE_PATH = "active"
OPS = ("replace", "add", "remove")
_REMOVE_ONE_PREFIX = "members[value eq "


# ─────────────────────────────────────────────────────────────────────────────
# Operation shapes
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class MemberStub:
    """A `{value, display?}` member reference as sent in PATCH values."""
    value: str
    display: Optional[str] = None


@dataclass(frozen=True)
class ReplaceScalar:
    value: Any


@dataclass(frozen=True)
class ReplaceMembers:
    members: tuple[MemberStub, ...]


@dataclass(frozen=True)
class AddMembers:
    members: tuple[MemberStub, ...]


@dataclass(frozen=True)
class RemoveAll:
    pass


@dataclass(frozen=True)
class RemoveOne:
    value: str


PatchOp = Union[ReplaceScalar, ReplaceMembers, AddMembers, RemoveAll, RemoveOne]


# ─────────────────────────────────────────────────────────────────────────────
# Decoding
# ─────────────────────────────────────────────────────────────────────────────

def _is_members_path(path: Optional[str]) -> bool:
    return path is not None and path.strip().lower() == MEMBERS_PATH


def _decode_member_stubs(value: Any, error: str) -> tuple[MemberStub, ...]:
    if not isinstance(value, list):
        raise PatchInvalid(error)

    stubs = []
    for item in value:
        if not isinstance(item, dict) or not isinstance(item.get("value"), str):
            raise PatchInvalid(error)
        display = item.get("display")
        if display is not None and not isinstance(display, str):
            raise PatchInvalid(error)
        stubs.append(MemberStub(value=item["value"], display=display))
    return tuple(stubs)


def parse_remove_path(path: str) -> Union[RemoveAll, RemoveOne]:
    """Parse the path of a remove op.

    Accepts exactly `members` or `members[value eq "<id>"]`, with
    case-insensitive keywords.
    """
    path = path.strip().lower()
    if path == MEMBERS_PATH:
        return RemoveAll()

    if not (path.startswith(_REMOVE_ONE_PREFIX) and path.endswith("]")):
        raise PatchInvalid('path should be specified as members[value eq "<VALUE>"]')

    value = unquote(path[len(_REMOVE_ONE_PREFIX):-1])
    if value is None:
        raise PatchInvalid("individual group remove op must contain a quoted value in the path")

    return RemoveOne(value)


@dataclass(frozen=True)
class Operation:
    """One element of the Operations array, before any path is interpreted."""
    op: str
    path: Optional[str] = None
    value: Any = None
    has_value: bool = False

    @classmethod
    def from_dict(cls, raw: Any) -> "Operation":
        if not isinstance(raw, dict):
            raise PatchInvalid("each operation must be a JSON object")

        op = raw.get("op")
        if not isinstance(op, str):
            raise PatchInvalid("operation is missing the op field")

        # Azure AD sends "Replace", "Add" and "Remove"
        op = op.lower()
        if op not in OPS:
            raise PatchInvalid(f"unknown patch op {raw.get('op')}")

        path = raw.get("path")
        if path is not None and not isinstance(path, str):
            raise PatchInvalid("operation path must be a string")

        return cls(op=op, path=path, value=raw.get("value"), has_value="value" in raw)


def _is_active_path(path: Optional[str]) -> bool:
    return path is not None and path.strip().lower() == ACTIVE_PATH


def decode_group_operation(operation: Operation) -> PatchOp:
    """Interpret an Operation against the Group path grammar."""
    path = operation.path

    if operation.op == "replace":
        if not operation.has_value:
            raise PatchInvalid("replace op requires a value")
        if path is None:
            return ReplaceScalar(operation.value)
        if _is_members_path(path):
            return ReplaceMembers(
                _decode_member_stubs(operation.value, "members being replaced in a group require a value field")
            )
        raise PatchUnsupported(f"replacing path {path} is not supported")

    if operation.op == "add":
        if not _is_members_path(path):
            raise PatchInvalid("group add op must provide members as the path")
        if not isinstance(operation.value, list):
            raise PatchInvalid("group add op value must be an array of members")
        return AddMembers(_decode_member_stubs(operation.value, "group add op member value expected"))

    if path is None:
        raise PatchInvalid("remove op requires a path")
    return parse_remove_path(path)


def decode_operation(raw: Any) -> PatchOp:
    """Decode one raw element of the Operations array for a Group."""
    return decode_group_operation(Operation.from_dict(raw))


def decode_user_operation(operation: Operation) -> bool:
    """Interpret an Operation against a User and return the new active flag.

    Only replace is supported, and only of `active`: either as a partial
    object `{"active": <bool>}` (any path is ignored) or, as Azure AD sends
    it, with path "active" and a bare boolean value.
    """
    if operation.op != "replace":
        raise PatchUnsupported("only the replace op is supported for users")
    if not operation.has_value:
        raise PatchInvalid("replace op requires a value")

    value = operation.value
    if _is_active_path(operation.path) and isinstance(value, bool):
        value = {"active": value}

    if not isinstance(value, dict) or not isinstance(value.get("active"), bool):
        raise PatchUnsupported("only replacing the active property is supported")
    return value["active"]


# ─────────────────────────────────────────────────────────────────────────────
# Request
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class PatchRequest:
    schemas: list[str]
    operations: list[Operation]

    @classmethod
    def from_dict(cls, payload: Any) -> "PatchRequest":
        """Validate the PatchOp envelope and read every operation.

        An empty Operations array is a valid request that changes nothing.

        Raises:
            PatchInvalid: wrong schemas, missing Operations, malformed operation
        """
        if not isinstance(payload, dict):
            raise PatchInvalid("request body must be a JSON object")

        schemas = payload.get("schemas")
        if schemas != [PATCHOP_URN]:
            raise PatchInvalid(f"invalid patch schema {schemas!r}")

        operations = payload.get("Operations")
        if not isinstance(operations, list):
            raise PatchInvalid("Operations must be an array")

        return cls(schemas=schemas, operations=[Operation.from_dict(op) for op in operations])

    def apply_user_ops(self, stored_user: StoredParts) -> StoredParts:
        """Return a new StoredParts with every operation applied to a copy of the user."""
        active_values = [decode_user_operation(op) for op in self.operations]

        updated = copy.deepcopy(stored_user)
        user = updated.resource

        # RFC 7644 3.5.2: operations are applied sequentially in the order
        # they appear in the array; the resulting resource becomes the target
        # of the next operation.
        for active in active_values:
            logger.info(
                f"PatchOp setting user active property | user={user.id} | "
                f"old={user.active} | new={active}"
            )
            user.active = active

        return updated

    def apply_group_ops(self, stored_group: StoredParts) -> StoredParts:
        """Return a new StoredParts with every operation applied to a copy of the group."""
        operations = [decode_group_operation(op) for op in self.operations]

        updated = copy.deepcopy(stored_group)
        group = updated.resource

        for op in operations:
            if isinstance(op, ReplaceScalar):
                _replace_group_attributes(group, op.value)
            elif isinstance(op, ReplaceMembers):
                _replace_group_members(group, op.members)
            elif isinstance(op, AddMembers):
                _add_group_members(group, op.members)
            elif isinstance(op, RemoveAll):
                logger.info(f"PatchOp removing all group members | group={group.id}")
                group.members = None
            else:
                _remove_group_member(group, op.value)

        # An emptied member set is stored as "no members"
        if not group.members:
            group.members = None

        return updated


# ─────────────────────────────────────────────────────────────────────────────
# Group operations
# ─────────────────────────────────────────────────────────────────────────────

def _replace_group_attributes(group: Group, value: Any) -> None:
    # RFC 7644 3.5.2.3: with no path the value holds the attributes to replace.
    # Only displayName is supported, and the id must name this group.
    if not (
        isinstance(value, dict)
        and isinstance(value.get("id"), str)
        and isinstance(value.get("displayName"), str)
    ):
        raise PatchUnsupported("only replacing a displayName is supported when not including a path")

    if member_key(value["id"]) != member_key(group.id):
        raise PatchInvalid(f"unexpected group id {value['id']}")

    logger.info(
        f"PatchOp replacing group displayName | group={group.id} | "
        f"old={group.display_name} | new={value['displayName']}"
    )
    group.display_name = value["displayName"]


def _replace_group_members(group: Group, stubs: tuple[MemberStub, ...]) -> None:
    new_members: dict[str, GroupMember] = {}
    for stub in stubs:
        new_members[member_key(stub.value)] = GroupMember(value=stub.value, type=USER)

    logger.info(
        f"PatchOp replacing group members | group={group.id} | "
        f"old={[m.value for m in group.members or []]} | new={[m.value for m in new_members.values()]}"
    )
    group.members = list(new_members.values()) or None


def _add_group_members(group: Group, stubs: tuple[MemberStub, ...]) -> None:
    members = group.members if group.members is not None else []

    for stub in stubs:
        if stub.display is not None and member_key(stub.display) == member_key(group.display_name):
            raise PatchInvalid(
                f"group add op value display was {stub.display} expected {group.display_name}"
            )

        new_member = GroupMember(value=stub.value, type=USER)
        index = next((i for i, m in enumerate(members) if m.key == new_member.key), None)

        # RFC 7644 3.5.2.1: if the target already contains the value, no
        # changes should be made and success is returned.
        if index is None:
            members.append(new_member)
        else:
            logger.info(f"PatchOp adding existing group member | group={group.id} | member={stub.value}")
            members[index] = new_member

    group.members = members


def _remove_group_member(group: Group, value: str) -> None:
    members = group.members or []
    remaining = [m for m in members if m.key != member_key(value)]

    # RFC 7644 3.5.2.2: removing a non-member is a successful no-op
    if len(remaining) == len(members):
        logger.info(f"PatchOp attempted to remove non group member | group={group.id} | member={value}")
    else:
        logger.info(f"PatchOp removed member from group | group={group.id} | member={value}")

    group.members = remaining
