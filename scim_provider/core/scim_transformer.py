"""Stored resources -> SCIM 2.0 JSON envelopes.

Usage:
    # Single resource
    body = ScimTransformer.resource_to_scim(stored_user, base_url="https://host/scim/v2")

    # ListResponse
    body = ScimTransformer.list_response(stored_groups, base_url="https://host/scim/v2")

Optional attributes that are absent, and multi-valued attributes that are
empty, are left out of every response.
"""
from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from scim_provider.core.models import GROUP, USER, Group, StoredParts, User
from scim_provider.core.urn import GROUP_URN, LIST_RESPONSE_URN, USER_URN

_SCHEMAS = {USER: USER_URN, GROUP: GROUP_URN}
_ENDPOINTS = {USER: "Users", GROUP: "Groups"}


def format_datetime(value: datetime) -> str:
    """ISO 8601 in UTC with a Z suffix."""
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def omit_empty(value: Any) -> Any:
    """Recursively drop None values and empty lists from dicts."""
    if isinstance(value, dict):
        return {
            key: omit_empty(item)
            for key, item in value.items()
            if item is not None and item != []
        }
    if isinstance(value, list):
        return [omit_empty(item) for item in value]
    return value


def resource_type_of(resource: Any) -> str:
    if isinstance(resource, User):
        return USER
    if isinstance(resource, Group):
        return GROUP
    raise TypeError(f"not a SCIM resource: {resource!r}")


class ScimTransformer:
    """Builds the protocol-shaped JSON for stored resources."""

    @staticmethod
    def location(resource_type: str, resource_id: str, base_url: str) -> str:
        return f"{base_url.rstrip('/')}/{_ENDPOINTS[resource_type]}/{resource_id}"

    @staticmethod
    def resource_to_scim(stored: StoredParts, base_url: str = "/scim/v2") -> Dict[str, Any]:
        """Convert a stored User or Group into a SCIM resource with schemas and meta.

        Example:
            >>> body = ScimTransformer.resource_to_scim(stored_user)
            >>> body["schemas"]
            ['urn:ietf:params:scim:schemas:core:2.0:User']
        """
        resource_type = resource_type_of(stored.resource)

        scim_resource = omit_empty(stored.resource.to_dict())
        scim_resource["schemas"] = [_SCHEMAS[resource_type]]
        scim_resource["meta"] = {
            "resourceType": resource_type,
            "created": format_datetime(stored.meta.created),
            "lastModified": format_datetime(stored.meta.last_modified),
            "version": stored.meta.version,
            "location": ScimTransformer.location(resource_type, stored.resource.id, base_url),
        }
        return scim_resource

    @staticmethod
    def list_response(
        resources: List[StoredParts],
        base_url: str = "/scim/v2",
        max_results: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Wrap resources in a ListResponse.

        Client-driven pagination is not implemented. totalResults is always
        the number of matching resources; when max_results cuts the list
        short, only the first page is returned and startIndex/itemsPerPage
        describe it.
        """
        page = resources if max_results is None else resources[:max_results]
        body: Dict[str, Any] = {
            "schemas": [LIST_RESPONSE_URN],
            "totalResults": len(resources),
        }
        if len(page) < len(resources):
            body["startIndex"] = 1
            body["itemsPerPage"] = len(page)
        body["Resources"] = [ScimTransformer.resource_to_scim(r, base_url) for r in page]
        return body
