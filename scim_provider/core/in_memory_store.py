"""In-memory ProviderStore.

Layout:
    _users        user id  -> StoredParts(User)   (groups always None here)
    _groups       group id -> StoredParts(Group)  (members always None here)
    _memberships  group id -> {member key: GroupMember}, insertion ordered
    _user_groups  user id  -> {group id: None}, the reverse index

The two membership maps are only ever changed together by _set_members,
and every public method holds the same lock for its whole duration, so no
caller can observe a group and its members' reverse index out of step.
Resources handed out are copies with `members`/`groups` filled in from the
side tables.
"""
from __future__ import annotations
import copy
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Optional

from scim_provider.core.errors import ScimError
from scim_provider.core.models import (
    GROUP,
    USER,
    CreateGroupRequest,
    CreateUserRequest,
    Group,
    GroupMember,
    StoredMeta,
    StoredParts,
    User,
    UserGroup,
    parse_resource_type,
)
from scim_provider.core.query_params import DisplayNameEq, FilterOp, UserNameEq
from scim_provider.core.store import DeleteResult, ProviderStore

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _same_name(a: str, b: str) -> bool:
    return a.casefold() == b.casefold()


class InMemoryProviderStore(ProviderStore):
    """A non-optimized provider store for tests and the demo server."""

    def __init__(self):
        self._lock = threading.Lock()
        self._users: dict[str, StoredParts] = {}
        self._groups: dict[str, StoredParts] = {}
        self._memberships: dict[str, dict[str, GroupMember]] = {}
        self._user_groups: dict[str, dict[str, None]] = {}

    # ─────────────────────────────────────────────────────────────────────
    # Views
    # ─────────────────────────────────────────────────────────────────────

    def _user_view(self, user_id: str) -> StoredParts:
        stored = copy.deepcopy(self._users[user_id])
        groups = [
            UserGroup(value=group_id, display=self._groups[group_id].resource.display_name)
            for group_id in self._user_groups.get(user_id, {})
        ]
        stored.resource.groups = groups or None
        return stored

    def _group_view(self, group_id: str) -> StoredParts:
        stored = copy.deepcopy(self._groups[group_id])
        members = [copy.copy(m) for m in self._memberships.get(group_id, {}).values()]
        stored.resource.members = members or None
        return stored

    def state(self) -> dict:
        """Snapshot of everything in the store, for debugging."""
        with self._lock:
            return {
                "users": {uid: self._user_view(uid).resource.to_dict() for uid in self._users},
                "groups": {gid: self._group_view(gid).resource.to_dict() for gid in self._groups},
                "memberships": {
                    gid: [m.value for m in members.values()]
                    for gid, members in self._memberships.items()
                },
            }

    # ─────────────────────────────────────────────────────────────────────
    # Membership
    # ─────────────────────────────────────────────────────────────────────

    def _find_user_id(self, value: str) -> Optional[str]:
        if value in self._users:
            return value
        return next((uid for uid in self._users if _same_name(uid, value)), None)

    def _find_group_id(self, value: str) -> Optional[str]:
        if value in self._groups:
            return value
        return next((gid for gid in self._groups if _same_name(gid, value)), None)

    def _resolve_member(self, member: GroupMember) -> GroupMember:
        """Check a member reference and return it with its type filled in."""
        if member.value is None:
            raise ScimError.invalid_syntax("group member missing value field")

        if member.type is not None:
            member_type = parse_resource_type(member.type)
            if member_type == GROUP:
                raise ScimError.internal_error("nested groups not supported")
            user_id = self._find_user_id(member.value)
            if user_id is None:
                raise ScimError.not_found(member.value)
            return GroupMember(value=user_id, type=USER)

        user_id = self._find_user_id(member.value)
        group_id = self._find_group_id(member.value)

        if user_id is None and group_id is None:
            raise ScimError.not_found(member.value)
        if user_id is not None and group_id is not None:
            raise ScimError.internal_error(f"{member.value} returned a user and group!")
        if group_id is not None:
            raise ScimError.internal_error("nested groups not supported")

        return GroupMember(value=user_id, type=USER)

    def _resolve_members(self, members: Optional[list[GroupMember]]) -> list[GroupMember]:
        # Resolve everything before touching state so a bad member leaves
        # the store unchanged.
        return [self._resolve_member(member) for member in members or []]

    def _set_members(self, group_id: str, members: list[GroupMember]) -> None:
        for old in self._memberships.pop(group_id, {}).values():
            reverse = self._user_groups.get(old.value)
            if reverse is not None:
                reverse.pop(group_id, None)
                if not reverse:
                    del self._user_groups[old.value]

        if not members:
            return

        forward: dict[str, GroupMember] = {}
        for member in members:
            forward[member.key] = member
        self._memberships[group_id] = forward

        for member in forward.values():
            self._user_groups.setdefault(member.value, {})[group_id] = None

    # ─────────────────────────────────────────────────────────────────────
    # Users
    # ─────────────────────────────────────────────────────────────────────

    def get_user(self, user_id: str) -> Optional[StoredParts]:
        with self._lock:
            if user_id not in self._users:
                return None
            return self._user_view(user_id)

    def create_user(self, request: CreateUserRequest) -> StoredParts:
        with self._lock:
            if any(_same_name(s.resource.user_name, request.user_name) for s in self._users.values()):
                raise ScimError.conflict(f"userName {request.user_name}")

            user_id = str(uuid.uuid4())
            now = _now()
            self._users[user_id] = StoredParts(
                resource=User(
                    id=user_id,
                    user_name=request.user_name,
                    active=request.active,
                    external_id=request.external_id,
                ),
                meta=StoredMeta(created=now, last_modified=now),
            )
            logger.debug(f"Stored user | id={user_id} | userName={request.user_name}")
            return self._user_view(user_id)

    def list_users(self, filter_op: Optional[FilterOp] = None) -> list[StoredParts]:
        if filter_op is not None and not isinstance(filter_op, UserNameEq):
            raise ScimError.invalid_filter("invalid or unsupported filter")

        with self._lock:
            return [
                self._user_view(user_id)
                for user_id, stored in self._users.items()
                if filter_op is None or _same_name(stored.resource.user_name, filter_op.value)
            ]

    def replace_user(self, user_id: str, request: CreateUserRequest) -> StoredParts:
        with self._lock:
            existing = self._users.get(user_id)
            if existing is None:
                raise ScimError.not_found(user_id)

            if any(
                _same_name(s.resource.user_name, request.user_name) and s.resource.id != user_id
                for s in self._users.values()
            ):
                raise ScimError.conflict(f"userName {request.user_name}")

            # RFC 7644 3.5.1: readWrite attributes omitted from the body are
            # cleared. groups is derived from memberships and is left alone.
            self._users[user_id] = StoredParts(
                resource=User(
                    id=user_id,
                    user_name=request.user_name,
                    active=request.active,
                    external_id=request.external_id,
                ),
                meta=StoredMeta(
                    created=existing.meta.created,
                    last_modified=_now(),
                    version=existing.meta.version,
                ),
            )
            return self._user_view(user_id)

    def delete_user(self, user_id: str) -> DeleteResult:
        with self._lock:
            if self._users.pop(user_id, None) is None:
                return DeleteResult.NOT_FOUND
            # Forward member lists of groups keep the stale reference.
            self._user_groups.pop(user_id, None)
            return DeleteResult.DELETED

    # ─────────────────────────────────────────────────────────────────────
    # Groups
    # ─────────────────────────────────────────────────────────────────────

    def get_group(self, group_id: str) -> Optional[StoredParts]:
        with self._lock:
            if group_id not in self._groups:
                return None
            return self._group_view(group_id)

    def create_group(self, request: CreateGroupRequest) -> StoredParts:
        with self._lock:
            if any(_same_name(s.resource.display_name, request.display_name) for s in self._groups.values()):
                raise ScimError.conflict(f"displayName {request.display_name}")

            members = self._resolve_members(request.members)

            group_id = str(uuid.uuid4())
            now = _now()
            self._groups[group_id] = StoredParts(
                resource=Group(
                    id=group_id,
                    display_name=request.display_name,
                    external_id=request.external_id,
                ),
                meta=StoredMeta(created=now, last_modified=now),
            )
            self._set_members(group_id, members)
            logger.debug(f"Stored group | id={group_id} | members={len(members)}")
            return self._group_view(group_id)

    def list_groups(self, filter_op: Optional[FilterOp] = None) -> list[StoredParts]:
        if filter_op is not None and not isinstance(filter_op, DisplayNameEq):
            raise ScimError.invalid_filter("invalid or unsupported filter")

        with self._lock:
            return [
                self._group_view(group_id)
                for group_id, stored in self._groups.items()
                if filter_op is None or _same_name(stored.resource.display_name, filter_op.value)
            ]

    def replace_group(self, group_id: str, request: CreateGroupRequest) -> StoredParts:
        with self._lock:
            existing = self._groups.get(group_id)
            if existing is None:
                raise ScimError.not_found(group_id)

            if any(
                _same_name(s.resource.display_name, request.display_name) and s.resource.id != group_id
                for s in self._groups.values()
            ):
                raise ScimError.conflict(f"displayName {request.display_name}")

            members = self._resolve_members(request.members)

            self._groups[group_id] = StoredParts(
                resource=Group(
                    id=group_id,
                    display_name=request.display_name,
                    external_id=request.external_id,
                ),
                meta=StoredMeta(
                    created=existing.meta.created,
                    last_modified=_now(),
                    version=existing.meta.version,
                ),
            )
            self._set_members(group_id, members)
            return self._group_view(group_id)

    def delete_group(self, group_id: str) -> DeleteResult:
        with self._lock:
            if self._groups.pop(group_id, None) is None:
                return DeleteResult.NOT_FOUND
            self._set_members(group_id, [])
            return DeleteResult.DELETED
