"""Gunicorn configuration file.

The default ProviderStore lives in process memory, so the server runs ONE
worker process and scales with threads instead: every thread shares the
same store, and the store's lock keeps group membership consistent. More
workers would each get their own, diverging, copy of the data.

Run with:
    gunicorn -c gunicorn.conf.py scim_provider.flask_app:app
"""
import os

bind = os.environ.get("GUNICORN_BIND", "0.0.0.0:5000")
workers = 1
worker_class = "gthread"
threads = int(os.environ.get("GUNICORN_THREADS", "8"))
timeout = int(os.environ.get("GUNICORN_TIMEOUT", "30"))
accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("LOG_LEVEL", "info").lower()


def post_fork(server, worker):
    """
    Called just after a worker has been forked.

    Warns when /run/secrets holds a SCIM token so operators can tell which
    source authentication is using.
    """
    from pathlib import Path
    secret_file = Path("/run/secrets") / "scim_static_token"
    if secret_file.exists() and secret_file.is_file():
        worker.log.info("Found scim_static_token in /run/secrets (bearer auth enabled)")
    elif os.environ.get("SCIM_STATIC_TOKEN"):
        worker.log.info("Using SCIM_STATIC_TOKEN from environment (bearer auth enabled)")
    else:
        worker.log.warning("No SCIM token configured: the SCIM API is unauthenticated")
