"""App-wide error handlers.

Errors raised outside a SCIM route (unknown URL, wrong method, werkzeug's
own body-size check, unhandled exceptions) are rendered in the same
RFC 7644 error envelope as the SCIM blueprint uses, so clients never see
an HTML error page.
"""
from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from scim_provider.core.errors import INVALID_SYNTAX, INVALID_VALUE, ScimError

SCIM_CONTENT_TYPE = "application/scim+json"


def _scim_error(status: int, detail: str, scim_type: str = None):
    response = jsonify(ScimError(status, detail, scim_type).to_dict())
    response.status_code = status
    response.mimetype = SCIM_CONTENT_TYPE
    return response


def register_error_handlers(app):
    """Register error handlers with the Flask app."""

    @app.errorhandler(400)
    def bad_request(error):
        return _scim_error(400, error.description or "Bad Request", INVALID_SYNTAX)

    @app.errorhandler(404)
    def not_found(error):
        return _scim_error(404, f"Resource {request.path} not found")

    @app.errorhandler(405)
    def method_not_allowed(error):
        response = _scim_error(405, f"Method {request.method} not allowed on {request.path}")
        # Keep the Allow header werkzeug computed
        allowed = getattr(error, "valid_methods", None) or []
        if allowed:
            response.headers["Allow"] = ", ".join(allowed)
        return response

    @app.errorhandler(413)
    def request_too_large(error):
        return _scim_error(413, "Request payload too large", INVALID_VALUE)

    @app.errorhandler(415)
    def unsupported_media_type(error):
        return _scim_error(415, "Content-Type must be application/scim+json or application/json", INVALID_SYNTAX)

    @app.errorhandler(500)
    def internal_error(error):
        """Handle 500 Internal Server Error."""
        # ALWAYS log the full error (even in production) - logs are secure
        app.logger.error(f"Internal error: {error}", exc_info=True)
        return _scim_error(500, "An unexpected error occurred")

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Handle uncaught exceptions."""
        # Pass through HTTP errors
        if isinstance(error, HTTPException):
            return error

        app.logger.error(f"Unhandled exception | path={request.path} | {error!r}", exc_info=True)
        return _scim_error(500, "An unexpected error occurred")
