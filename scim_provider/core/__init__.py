"""Core SCIM Provider Logic

Everything the HTTP layer needs to serve SCIM 2.0 Users and Groups,
independent of Flask.

Architecture:
    - Pure Python (no Flask dependencies in core logic)
    - Testable without HTTP mocking
    - Storage is pluggable behind the ProviderStore contract

Module Structure:
    - errors.py           : ScimError and the PATCH error taxonomy
    - urn.py              : SCIM schema URNs
    - models.py           : User, Group, members, stored metadata, request shapes
    - query_params.py     : Filter parser and list query parameters
    - patch.py            : PATCH engine (decode, then apply in order on a copy)
    - store.py            : ProviderStore contract and DeleteResult
    - in_memory_store.py  : Thread-safe in-memory ProviderStore
    - provider.py         : CRUD/PATCH orchestration and error translation
    - scim_transformer.py : Stored resources -> SCIM JSON envelopes

Usage Pattern:
    These modules are NOT auto-imported. Import explicitly when needed:
        from scim_provider.core.provider import Provider
        from scim_provider.core.in_memory_store import InMemoryProviderStore

        provider = Provider(InMemoryProviderStore(), base_url="http://localhost:5000/scim/v2")
        user = provider.create_user({"userName": "alice"})
"""
