"""SCIM 2.0 provider Flask Application Package.

To use the Flask app:
    from scim_provider.flask_app import create_app

To use the provider without HTTP:
    from scim_provider.core.provider import Provider
    from scim_provider.core.in_memory_store import InMemoryProviderStore
"""
# Note: We don't import flask_app by default so the core package stays
# usable without Flask
