"""SCIM 2.0 API endpoints (RFC 7644) for Users and Groups.

This module is a thin HTTP shell: every route hands the decoded request to
the Provider stored on the app (app.extensions["scim_provider"]) and turns
its result or ScimError into a SCIM JSON response.

Architecture:
    SCIM API (/scim/v2/*) -> core/provider.py -> ProviderStore

Security:
    - Optional static Bearer token (SCIM_STATIC_TOKEN), constant-time compared
    - With no token configured the API is open (local testing only)
    - Discovery endpoints (ServiceProviderConfig, ResourceTypes, Schemas) are public
"""

from __future__ import annotations
import hashlib
import hmac
import logging
from flask import Blueprint, Response, abort, current_app, jsonify, request

from scim_provider.config import AppConfig
from scim_provider.core.errors import UNAUTHORIZED, INVALID_SYNTAX, INVALID_VALUE, ScimError
from scim_provider.core.provider import Provider
from scim_provider.core.query_params import QueryParams
from scim_provider.core.urn import (
    GROUP_URN,
    LIST_RESPONSE_URN,
    RESOURCE_TYPE_URN,
    SERVICE_PROVIDER_CONFIG_URN,
    USER_URN,
)

# SCIM 2.0 Blueprint
bp = Blueprint('scim', __name__, url_prefix='/scim/v2')

SCIM_CONTENT_TYPE = "application/scim+json"
ACCEPTED_CONTENT_TYPES = ("application/scim+json", "application/json")

DISCOVERY_PATHS = (
    "/scim/v2/ServiceProviderConfig",
    "/scim/v2/ResourceTypes",
    "/scim/v2/Schemas",
)

logger = logging.getLogger(__name__)


def _config() -> AppConfig:
    return current_app.config["APP_CONFIG"]


def _provider() -> Provider:
    return current_app.extensions["scim_provider"]


# ─────────────────────────────────────────────────────────────────────────────
# Authentication Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _validate_static_token(provided_token: str) -> bool:
    """Validate the bearer token with constant-time comparison.

    Security:
        - Uses hmac.compare_digest for timing-attack resistance
        - Never logs the actual token value
    """
    expected_token = _config().scim_static_token
    if not expected_token:
        return False
    return hmac.compare_digest(provided_token.encode(), expected_token.encode())


def _log_auth_attempt(token: str, success: bool):
    """Log authentication attempt without leaking secrets.

    Only a SHA256 hash (truncated to 12 chars) of the token is logged.
    """
    token_hash = hashlib.sha256(token.encode()).hexdigest()[:12]

    correlation_id = request.headers.get("X-Correlation-Id", "none")
    client_ip = request.headers.get("X-Forwarded-For", request.remote_addr)

    status = "SUCCESS" if success else "FAILED"
    logger.info(
        f"{status} SCIM auth | token_hash={token_hash} | path={request.path} | "
        f"correlation_id={correlation_id} | client_ip={client_ip}"
    )


# ─────────────────────────────────────────────────────────────────────────────
# Responses
# ─────────────────────────────────────────────────────────────────────────────

def scim_response(body: dict, status: int = 200) -> Response:
    """Serialize a SCIM body with the SCIM media type."""
    response = jsonify(body)
    response.status_code = status
    response.mimetype = SCIM_CONTENT_TYPE
    return response


def scim_error_response(status: int, detail: str, scim_type: str = None) -> Response:
    """Create SCIM error Response object for before_request handlers."""
    response = scim_response(ScimError(status, detail, scim_type).to_dict(), status)
    if status == 401:
        response.headers["WWW-Authenticate"] = 'Bearer realm="scim"'
    return response


@bp.errorhandler(ScimError)
def handle_scim_error(error: ScimError):
    """Render every ScimError raised by a route as the RFC 7644 error envelope."""
    if error.status >= 500:
        logger.warning(f"SCIM request failed | status={error.status} | path={request.path} | detail={error.detail}")
    return scim_error_response(error.status, error.detail, error.scim_type)


# ─────────────────────────────────────────────────────────────────────────────
# Request Validation Middleware
# ─────────────────────────────────────────────────────────────────────────────

@bp.before_request
def validate_request():
    """Validate bearer token, request size, and content type.

    1. Discovery endpoints are public
    2. With a static token configured, every other endpoint needs
       'Authorization: Bearer <token>' -> 401 otherwise
    3. Payload above max_payload_bytes -> 413
    4. POST/PUT/PATCH bodies must be application/scim+json or application/json -> 415
    """
    cfg = _config()

    is_discovery = request.path.startswith(DISCOVERY_PATHS)
    if cfg.auth_enabled and not is_discovery:
        auth_header = request.headers.get("Authorization", "")
        if not auth_header:
            return scim_error_response(401, "Authorization header missing. Provide 'Authorization: Bearer <token>'.", UNAUTHORIZED)

        if not auth_header.startswith("Bearer "):
            return scim_error_response(401, "Authorization header must use Bearer token scheme: 'Authorization: Bearer <token>'.", UNAUTHORIZED)

        token = auth_header[7:].strip()
        if not token:
            return scim_error_response(401, "Bearer token is empty.", UNAUTHORIZED)

        if not _validate_static_token(token):
            _log_auth_attempt(token, success=False)
            return scim_error_response(401, "Invalid bearer token.", UNAUTHORIZED)

        _log_auth_attempt(token, success=True)

    if request.content_length and request.content_length > cfg.max_payload_bytes:
        return scim_error_response(413, "Request payload too large", INVALID_VALUE)

    if request.method in ("POST", "PUT", "PATCH"):
        if request.mimetype not in ACCEPTED_CONTENT_TYPES:
            return scim_error_response(
                415,
                "Content-Type must be application/scim+json or application/json",
                INVALID_SYNTAX,
            )


@bp.after_request
def add_correlation_id(response):
    """Echo the correlation ID back for tracing."""
    correlation_id = request.headers.get("X-Correlation-Id")
    if correlation_id:
        response.headers["X-Correlation-Id"] = correlation_id
    return response


# ─────────────────────────────────────────────────────────────────────────────
# SCIM Schema Discovery Endpoints
# ─────────────────────────────────────────────────────────────────────────────

def _resource_type(name: str, endpoint: str, schema: str, description: str) -> dict:
    return {
        "schemas": [RESOURCE_TYPE_URN],
        "id": name,
        "name": name,
        "endpoint": f"/{endpoint}",
        "description": description,
        "schema": schema,
        "meta": {
            "location": f"{_config().scim_base_url.rstrip('/')}/ResourceTypes/{name}",
            "resourceType": "ResourceType",
        },
    }


def _resource_types() -> dict:
    return {
        "User": _resource_type("User", "Users", USER_URN, "User Account"),
        "Group": _resource_type("Group", "Groups", GROUP_URN, "Group"),
    }


def _attribute(name: str, type_: str = "string", **overrides) -> dict:
    attribute = {
        "name": name,
        "type": type_,
        "multiValued": False,
        "required": False,
        "caseExact": False,
        "mutability": "readWrite",
        "returned": "default",
        "uniqueness": "none",
    }
    attribute.update(overrides)
    return attribute


def _schemas() -> list[dict]:
    base_url = _config().scim_base_url.rstrip("/")
    member_reference = [
        _attribute("value", mutability="immutable"),
        _attribute("display", mutability="readOnly"),
        _attribute("type", mutability="immutable", canonicalValues=["User", "Group"]),
    ]
    return [
        {
            "id": USER_URN,
            "name": "User",
            "description": "User Account",
            "attributes": [
                _attribute("userName", required=True, uniqueness="server"),
                _attribute("active", "boolean"),
                _attribute("externalId", caseExact=True),
                _attribute(
                    "groups",
                    "complex",
                    multiValued=True,
                    mutability="readOnly",
                    subAttributes=[
                        _attribute("value", mutability="readOnly"),
                        _attribute("display", mutability="readOnly"),
                        _attribute("type", mutability="readOnly", canonicalValues=["direct", "indirect"]),
                    ],
                ),
            ],
            "meta": {"resourceType": "Schema", "location": f"{base_url}/Schemas/{USER_URN}"},
        },
        {
            "id": GROUP_URN,
            "name": "Group",
            "description": "Group",
            "attributes": [
                _attribute("displayName", required=True, uniqueness="server"),
                _attribute("externalId", caseExact=True),
                _attribute("members", "complex", multiValued=True, subAttributes=member_reference),
            ],
            "meta": {"resourceType": "Schema", "location": f"{base_url}/Schemas/{GROUP_URN}"},
        },
    ]


@bp.route('/ServiceProviderConfig', methods=['GET'])
def service_provider_config():
    """Return SCIM ServiceProviderConfig (RFC 7643 Section 5)."""
    cfg = _config()
    config = {
        "schemas": [SERVICE_PROVIDER_CONFIG_URN],
        "patch": {
            "supported": True
        },
        "bulk": {
            "supported": False,
            "maxOperations": 0,
            "maxPayloadSize": 0
        },
        "filter": {
            "supported": True,
            "maxResults": cfg.list_max_results
        },
        "changePassword": {
            "supported": False
        },
        "sort": {
            "supported": False
        },
        "etag": {
            "supported": False
        },
        "authenticationSchemes": [],
    }
    if cfg.auth_enabled:
        config["authenticationSchemes"].append({
            "name": "OAuth Bearer Token",
            "description": "Static bearer token in the Authorization header",
            "specUri": "https://tools.ietf.org/html/rfc6750",
            "type": "oauthbearertoken",
            "primary": True
        })
    return scim_response(config)


@bp.route('/ResourceTypes', methods=['GET'])
def resource_types():
    """Return supported SCIM resource types."""
    resources = list(_resource_types().values())
    return scim_response({
        "schemas": [LIST_RESPONSE_URN],
        "totalResults": len(resources),
        "Resources": resources,
    })


@bp.route('/ResourceTypes/<name>', methods=['GET'])
def resource_type(name: str):
    resource = _resource_types().get(name)
    if resource is None:
        raise ScimError.not_found(name)
    return scim_response(resource)


@bp.route('/Schemas', methods=['GET'])
def schemas():
    """Return SCIM schema definitions."""
    schema_list = _schemas()
    return scim_response({
        "schemas": [LIST_RESPONSE_URN],
        "totalResults": len(schema_list),
        "Resources": schema_list,
    })


# ─────────────────────────────────────────────────────────────────────────────
# SCIM User CRUD Operations
# ─────────────────────────────────────────────────────────────────────────────

def _created(resource: dict) -> Response:
    response = scim_response(resource, 201)
    response.headers["Location"] = resource["meta"]["location"]
    return response


@bp.route('/Users', methods=['GET'])
def list_users():
    """List users, optionally filtered by `userName eq "<value>"`.

    RFC 7644 Section 3.4.2: Listing Resources
    """
    query = QueryParams.from_args(request.args)
    return scim_response(_provider().list_users(query))


@bp.route('/Users', methods=['POST'])
def create_user():
    """Create a new user.

    RFC 7644 Section 3.3: Creating Resources

    Returns:
        201 Created with Location header and User resource
    """
    return _created(_provider().create_user(request.get_json(silent=True)))


@bp.route('/Users/<user_id>', methods=['GET'])
def get_user(user_id: str):
    """RFC 7644 Section 3.4.1: Retrieving a Known Resource."""
    query = QueryParams.from_args(request.args)
    return scim_response(_provider().get_user(user_id, query))


@bp.route('/Users/<user_id>', methods=['PUT'])
def replace_user(user_id: str):
    """Replace a user (RFC 7644 Section 3.5.1).

    Omitted readWrite attributes (active, externalId) are cleared; the
    readOnly `groups` attribute is ignored.
    """
    return scim_response(_provider().replace_user(user_id, request.get_json(silent=True)))


@bp.route('/Users/<user_id>', methods=['PATCH'])
def patch_user(user_id: str):
    """Partially update a user (active flag only)."""
    return scim_response(_provider().patch_user(user_id, request.get_json(silent=True)))


@bp.route('/Users/<user_id>', methods=['DELETE'])
def delete_user(user_id: str):
    """RFC 7644 Section 3.6: Deleting Resources."""
    _provider().delete_user(user_id)
    return '', 204


# ─────────────────────────────────────────────────────────────────────────────
# SCIM Group CRUD Operations
# ─────────────────────────────────────────────────────────────────────────────

@bp.route('/Groups', methods=['GET'])
def list_groups():
    """List groups, optionally filtered by `displayName eq "<value>"`."""
    query = QueryParams.from_args(request.args)
    return scim_response(_provider().list_groups(query))


@bp.route('/Groups', methods=['POST'])
def create_group():
    """Create a group; every member must reference an existing user."""
    return _created(_provider().create_group(request.get_json(silent=True)))


@bp.route('/Groups/<group_id>', methods=['GET'])
def get_group(group_id: str):
    query = QueryParams.from_args(request.args)
    return scim_response(_provider().get_group(group_id, query))


@bp.route('/Groups/<group_id>', methods=['PUT'])
def replace_group(group_id: str):
    """Replace a group, including its whole member set."""
    return scim_response(_provider().replace_group(group_id, request.get_json(silent=True)))


@bp.route('/Groups/<group_id>', methods=['PATCH'])
def patch_group(group_id: str):
    """Apply a PatchOp: displayName replace, member replace/add/remove."""
    return scim_response(_provider().patch_group(group_id, request.get_json(silent=True)))


@bp.route('/Groups/<group_id>', methods=['DELETE'])
def delete_group(group_id: str):
    _provider().delete_group(group_id)
    return '', 204


# ─────────────────────────────────────────────────────────────────────────────
# Debug
# ─────────────────────────────────────────────────────────────────────────────

@bp.route('/state', methods=['GET'])
def state():
    """Dump the backing store (demo mode only)."""
    if not _config().demo_mode:
        abort(404)
    dump = _provider().state()
    if dump is None:
        abort(404)
    return scim_response(dump)
