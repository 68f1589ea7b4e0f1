"""The durable store contract behind the Provider.

A ProviderStore may raise ScimError for protocol-level failures (404, 409,
invalid member references), which the Provider passes to the client as-is.
Backend failures (lost connection, corrupt row, ...) should be raised as
StoreError, chaining the driver exception. StoreError, or any other
non-ScimError exception, is treated as a store-internal failure: it is
logged in full and replaced by a generic 500.

Group membership obligations:
    - create_group/replace_group resolve every member to an existing User;
      unknown ids are 404 and Group members ("nested groups") are 500.
    - replace_group drops the group from every user's reverse membership
      before re-adding the new member set, so no stale reverse references
      survive (including when the new set is empty or omitted).
    - delete_group strips the group from every user's reverse membership.
    - delete_user need not touch the forward member lists of groups.
    - Users' `groups` is derived from group membership and never written
      through replace_user.
"""
from __future__ import annotations
import enum
from abc import ABC, abstractmethod
from typing import Optional

from scim_provider.core.models import CreateGroupRequest, CreateUserRequest, StoredParts
from scim_provider.core.query_params import FilterOp


class DeleteResult(enum.Enum):
    DELETED = "deleted"
    NOT_FOUND = "not_found"


class ProviderStore(ABC):
    """Storage for Users and Groups."""

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[StoredParts]:
        ...

    @abstractmethod
    def create_user(self, request: CreateUserRequest) -> StoredParts:
        ...

    @abstractmethod
    def list_users(self, filter_op: Optional[FilterOp] = None) -> list[StoredParts]:
        ...

    @abstractmethod
    def replace_user(self, user_id: str, request: CreateUserRequest) -> StoredParts:
        ...

    @abstractmethod
    def delete_user(self, user_id: str) -> DeleteResult:
        ...

    @abstractmethod
    def get_group(self, group_id: str) -> Optional[StoredParts]:
        ...

    @abstractmethod
    def create_group(self, request: CreateGroupRequest) -> StoredParts:
        ...

    @abstractmethod
    def list_groups(self, filter_op: Optional[FilterOp] = None) -> list[StoredParts]:
        ...

    @abstractmethod
    def replace_group(self, group_id: str, request: CreateGroupRequest) -> StoredParts:
        ...

    @abstractmethod
    def delete_group(self, group_id: str) -> DeleteResult:
        """Delete a group and all of its memberships."""
