"""SCIM provider: CRUD and PATCH orchestration over a ProviderStore.

This is the layer the HTTP blueprint talks to. It is framework-free: every
method takes ids and already-decoded JSON bodies and returns SCIM-shaped
dicts, raising ScimError for anything the client should see.

Error policy:
    - ScimError raised by the store is passed through unchanged.
    - Any other store exception is logged with its full chain and replaced
      by a 500 carrying only an operation-specific context string.
    - Patch Engine errors become 400 invalidSyntax (invalid) or 501
      (unsupported).

Note: PATCH is a read-modify-write with no version check. Two concurrent
PATCHes on one resource can both start from the same state, and the later
write wins.
"""
from __future__ import annotations
import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from scim_provider.core.errors import PatchRequestError, ScimError
from scim_provider.core.models import CreateGroupRequest, CreateUserRequest, GroupMember, StoredParts
from scim_provider.core.patch import PatchRequest
from scim_provider.core.query_params import QueryParams
from scim_provider.core.scim_transformer import ScimTransformer
from scim_provider.core.store import DeleteResult, ProviderStore

logger = logging.getLogger(__name__)


@contextmanager
def store_errors(context: str) -> Iterator[None]:
    """Downgrade non-protocol store failures to a generic 500 with `context`."""
    try:
        yield
    except ScimError:
        raise
    except Exception as exc:
        # Full detail stays in the server log only
        logger.exception(f"{context} | {exc!r}")
        raise ScimError.internal_error(context) from exc


class Provider:
    """SCIM CRUD over a ProviderStore."""

    def __init__(self, store: ProviderStore, base_url: str = "/scim/v2", max_results: Optional[int] = None):
        self.store = store
        self.base_url = base_url
        self.max_results = max_results

    def state(self) -> Optional[dict]:
        """Debug dump of the backing store, or None if it can't produce one."""
        dump = getattr(self.store, "state", None)
        if dump is None:
            return None
        with store_errors("dump store state failed!"):
            return dump()

    def _resource(self, stored: StoredParts) -> dict:
        return ScimTransformer.resource_to_scim(stored, self.base_url)

    def _require_user(self, user_id: str, context: str) -> StoredParts:
        with store_errors(context):
            stored = self.store.get_user(user_id)
        if stored is None:
            raise ScimError.not_found(user_id)
        return stored

    def _require_group(self, group_id: str, context: str) -> StoredParts:
        with store_errors(context):
            stored = self.store.get_group(group_id)
        if stored is None:
            raise ScimError.not_found(group_id)
        return stored

    # ─────────────────────────────────────────────────────────────────────
    # Users
    # ─────────────────────────────────────────────────────────────────────

    def list_users(self, query: Optional[QueryParams] = None) -> dict:
        query = query or QueryParams()
        filter_op = query.parsed_filter()

        with store_errors("list users failed!"):
            users = self.store.list_users(filter_op)

        return ScimTransformer.list_response(users, self.base_url, self.max_results)

    def get_user(self, user_id: str, query: Optional[QueryParams] = None) -> dict:
        return self._resource(self._require_user(user_id, f"get user by id {user_id} failed!"))

    def create_user(self, payload: Any) -> dict:
        request = CreateUserRequest.from_dict(payload)

        # groups is readOnly: clients can't add users to groups on creation
        if request.groups:
            raise ScimError.mutability("attribute groups is readOnly")

        with store_errors("create user failed!"):
            stored = self.store.create_user(request)

        logger.info(f"Created user | id={stored.resource.id} | userName={stored.resource.user_name}")
        return self._resource(stored)

    def replace_user(self, user_id: str, payload: Any) -> dict:
        context = f"replace user by id {user_id} failed!"
        try:
            request = CreateUserRequest.from_dict(payload)
        except ScimError:
            # A missing resource is reported before a bad body
            self._require_user(user_id, context)
            raise

        # groups is readOnly and is ignored on replace (RFC 7643 2.2)
        request.groups = None

        with store_errors(context):
            stored = self.store.replace_user(user_id, request)

        logger.info(f"Replaced user | id={user_id}")
        return self._resource(stored)

    def patch_user(self, user_id: str, payload: Any) -> dict:
        stored = self._require_user(user_id, f"patch user by id {user_id} failed!")

        try:
            updated = PatchRequest.from_dict(payload).apply_user_ops(stored)
        except PatchRequestError as exc:
            raise exc.to_scim_error() from exc

        # Nothing changed: don't rewrite, so lastModified stays put
        if updated.resource == stored.resource:
            return self._resource(stored)

        user = updated.resource
        request = CreateUserRequest(
            user_name=user.user_name,
            active=user.active,
            external_id=user.external_id,
        )

        with store_errors(f"replace user by id {user_id} failed!"):
            stored = self.store.replace_user(user_id, request)

        logger.info(f"Patched user | id={user_id}")
        return self._resource(stored)

    def delete_user(self, user_id: str) -> None:
        with store_errors(f"delete user by id {user_id} failed!"):
            result = self.store.delete_user(user_id)

        if result is DeleteResult.NOT_FOUND:
            raise ScimError.not_found(user_id)

        logger.info(f"Deleted user | id={user_id}")

    # ─────────────────────────────────────────────────────────────────────
    # Groups
    # ─────────────────────────────────────────────────────────────────────

    def list_groups(self, query: Optional[QueryParams] = None) -> dict:
        query = query or QueryParams()
        filter_op = query.parsed_filter()

        with store_errors("list groups failed!"):
            groups = self.store.list_groups(filter_op)

        return ScimTransformer.list_response(groups, self.base_url, self.max_results)

    def get_group(self, group_id: str, query: Optional[QueryParams] = None) -> dict:
        return self._resource(self._require_group(group_id, f"get group by id {group_id} failed!"))

    def create_group(self, payload: Any) -> dict:
        request = CreateGroupRequest.from_dict(payload)

        # Member resolution belongs to the store
        with store_errors("create group failed!"):
            stored = self.store.create_group(request)

        logger.info(f"Created group | id={stored.resource.id} | displayName={stored.resource.display_name}")
        return self._resource(stored)

    def replace_group(self, group_id: str, payload: Any) -> dict:
        context = f"replace group by id {group_id} failed!"
        try:
            request = CreateGroupRequest.from_dict(payload)
        except ScimError:
            self._require_group(group_id, context)
            raise

        return self._replace_group(group_id, request)

    def _replace_group(self, group_id: str, request: CreateGroupRequest) -> dict:
        with store_errors(f"replace group by id {group_id} failed!"):
            stored = self.store.replace_group(group_id, request)

        logger.info(f"Replaced group | id={group_id} | members={len(stored.resource.members or [])}")
        return self._resource(stored)

    def patch_group(self, group_id: str, payload: Any) -> dict:
        stored = self._require_group(group_id, f"patch group by id {group_id} failed!")

        try:
            updated = PatchRequest.from_dict(payload).apply_group_ops(stored)
        except PatchRequestError as exc:
            raise exc.to_scim_error() from exc

        if updated.resource == stored.resource:
            return self._resource(stored)

        # The store's replace is a full overwrite, so every field is re-asserted
        group = updated.resource
        request = CreateGroupRequest(
            display_name=group.display_name,
            external_id=group.external_id,
            members=[GroupMember(value=m.value, type=m.type) for m in group.members or []],
        )
        return self._replace_group(group_id, request)

    def delete_group(self, group_id: str) -> None:
        with store_errors(f"delete group by id {group_id} failed!"):
            result = self.store.delete_group(group_id)

        if result is DeleteResult.NOT_FOUND:
            raise ScimError.not_found(group_id)

        logger.info(f"Deleted group | id={group_id}")
