"""Flask application factory and bootstrap.

This module provides the create_app() factory function for initializing
the Flask application with the SCIM blueprint, health checks, error
handlers and a Provider backed by a ProviderStore.
"""
from __future__ import annotations
import logging
from typing import Optional

from flask import Flask
from werkzeug.middleware.proxy_fix import ProxyFix

from scim_provider.config import AppConfig, load_settings
from scim_provider.core.in_memory_store import InMemoryProviderStore
from scim_provider.core.provider import Provider
from scim_provider.core.store import ProviderStore

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _configure_logging(level: str) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger().setLevel(level)


# ─────────────────────────────────────────────────────────────────────────────
# Application Factory
# ─────────────────────────────────────────────────────────────────────────────
def create_app(store: Optional[ProviderStore] = None, cfg: Optional[AppConfig] = None) -> Flask:
    """Create and configure Flask application.

    Args:
        store: Backend for the Provider (defaults to a fresh in-memory store)
        cfg: Settings (defaults to load_settings() from the environment)
    """
    cfg = cfg or load_settings()
    _configure_logging(cfg.log_level)

    app = Flask(__name__)

    # Store config for easy access in routes
    app.config["APP_CONFIG"] = cfg
    app.config["DEMO_MODE"] = cfg.demo_mode
    # werkzeug enforces this on bodies sent without a Content-Length
    app.config["MAX_CONTENT_LENGTH"] = cfg.max_payload_bytes

    # Trust X-Forwarded-* headers from proxy (nginx)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)  # type: ignore

    app.extensions["scim_provider"] = Provider(
        store or InMemoryProviderStore(), cfg.scim_base_url, max_results=cfg.list_max_results
    )

    # Register blueprints
    from scim_provider.api import errors, health, scim

    app.register_blueprint(health.bp)
    app.register_blueprint(scim.bp)

    # Register error handlers
    errors.register_error_handlers(app)

    # Log startup info
    mode_label = "DEMO" if cfg.demo_mode else "PRODUCTION"
    auth_label = "bearer" if cfg.auth_enabled else "none"
    app.logger.info(f"Mode={mode_label} | SCIM 2.0 API registered at /scim/v2 | auth={auth_label}")

    if cfg.demo_mode:
        app.logger.warning("Demo mode active - /scim/v2/state exposes the whole store")

    return app


# ─────────────────────────────────────────────────────────────────────────────
# Application Instance (for Gunicorn)
# ─────────────────────────────────────────────────────────────────────────────
app = create_app()


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=True)
