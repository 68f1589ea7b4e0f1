"""Query parameters for list/get endpoints and the equality filter parser.

Only the two filter expressions identity providers actually send are
supported (RFC 7644 Section 3.4.2.2 is much larger):

    userName eq "alice"
    displayName eq "Sales Reps"

Anything else is rejected with invalidFilter rather than silently ignored.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Union

from scim_provider.core.errors import ScimError


@dataclass(frozen=True)
class UserNameEq:
    value: str


@dataclass(frozen=True)
class DisplayNameEq:
    value: str


FilterOp = Union[UserNameEq, DisplayNameEq]

_FILTER_ATTRIBUTES = {
    "username": UserNameEq,
    "displayname": DisplayNameEq,
}


def unquote(value: str) -> Optional[str]:
    """Strip surrounding double quotes, or return None if `value` isn't a quoted literal."""
    if len(value) > 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    return None


def parse_filter(raw: str) -> FilterOp:
    """Parse a filter expression into a FilterOp.

    Attribute names and operators are case-insensitive, so the whole
    expression is lower-cased before splitting; the returned value is
    lower-cased too and compared case-insensitively by stores.

    Raises:
        ScimError: 400 invalidFilter for anything but `<attr> eq "<value>"`
    """
    expression = raw.strip().lower()
    parts = expression.split(" eq ")

    if len(parts) != 2:
        raise ScimError.invalid_filter(f"invalid filter {expression}")

    attribute, value = parts[0].strip(), unquote(parts[1].strip())
    filter_cls = _FILTER_ATTRIBUTES.get(attribute)

    if filter_cls is None or value is None:
        raise ScimError.invalid_filter(f"filter {expression} not supported")

    return filter_cls(value)


def _optional_int(args, name: str) -> Optional[int]:
    raw = args.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ScimError.invalid_value(f"{name} must be an integer")


@dataclass
class QueryParams:
    """Parsed query string of a SCIM read request.

    startIndex/count and attributes are accepted so clients that send them
    are not rejected, but they do not change the response.
    """
    filter: Optional[str] = None
    start_index: Optional[int] = None
    count: Optional[int] = None
    attributes: list[str] = field(default_factory=list)

    @classmethod
    def from_args(cls, args) -> "QueryParams":
        """Build from a mapping such as Flask's request.args."""
        attributes = [
            name.strip()
            for name in (args.get("attributes") or "").split(",")
            if name.strip()
        ]
        return cls(
            filter=args.get("filter") or None,
            start_index=_optional_int(args, "startIndex"),
            count=_optional_int(args, "count"),
            attributes=attributes,
        )

    def parsed_filter(self) -> Optional[FilterOp]:
        if self.filter is None:
            return None
        return parse_filter(self.filter)
