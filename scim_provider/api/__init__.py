"""Flask blueprints: SCIM API, health checks and app-wide error handlers."""
