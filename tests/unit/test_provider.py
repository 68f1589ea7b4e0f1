"""Unit tests for Provider orchestration (no HTTP)."""
import copy
import logging

import pytest

from scim_provider.core.errors import ScimError, StoreError
from scim_provider.core.in_memory_store import InMemoryProviderStore
from scim_provider.core.provider import Provider
from scim_provider.core.query_params import QueryParams

BASE_URL = "https://scim.example.com/scim/v2"
PATCHOP = "urn:ietf:params:scim:api:messages:2.0:PatchOp"


@pytest.fixture
def store():
    return InMemoryProviderStore()


@pytest.fixture
def provider(store):
    return Provider(store, base_url=BASE_URL)


def patch(*operations):
    return {"schemas": [PATCHOP], "Operations": list(operations)}


class TestUsers:
    def test_create_user_shapes_response(self, provider):
        user = provider.create_user({"userName": "dschrute", "externalId": "dschrute@dundermifflin.com"})

        assert user["schemas"] == ["urn:ietf:params:scim:schemas:core:2.0:User"]
        assert user["userName"] == "dschrute"
        assert user["meta"]["resourceType"] == "User"
        assert user["meta"]["location"] == f"{BASE_URL}/Users/{user['id']}"
        assert "groups" not in user
        assert "active" not in user

    def test_create_user_with_groups_is_mutability_error(self, provider, store):
        with pytest.raises(ScimError) as exc_info:
            provider.create_user({"userName": "jim", "groups": [{"value": "g1"}]})
        assert exc_info.value.status == 400
        assert exc_info.value.scim_type == "mutability"
        assert store.list_users() == []

    def test_create_user_with_empty_groups_is_allowed(self, provider):
        assert provider.create_user({"userName": "jim", "groups": []})["userName"] == "jim"

    @pytest.mark.parametrize("payload", [None, [], {"userName": ""}, {"externalId": "x"}, {"userName": 5}])
    def test_create_user_rejects_bad_bodies(self, provider, payload):
        with pytest.raises(ScimError) as exc_info:
            provider.create_user(payload)
        assert exc_info.value.status == 400

    def test_get_missing_user(self, provider):
        with pytest.raises(ScimError) as exc_info:
            provider.get_user("nope")
        assert exc_info.value == ScimError.not_found("nope")

    def test_replace_missing_user_with_bad_body_is_404(self, provider):
        with pytest.raises(ScimError) as exc_info:
            provider.replace_user("nope", {"externalId": "no userName"})
        assert exc_info.value.status == 404

    def test_replace_existing_user_with_bad_body_is_400(self, provider):
        user = provider.create_user({"userName": "jim"})
        with pytest.raises(ScimError) as exc_info:
            provider.replace_user(user["id"], {"externalId": "no userName"})
        assert exc_info.value.status == 400

    def test_replace_ignores_groups(self, provider):
        user = provider.create_user({"userName": "jim"})
        replaced = provider.replace_user(user["id"], {"userName": "jim", "groups": [{"value": "g1"}]})
        assert "groups" not in replaced

    def test_list_users_with_filter(self, provider):
        provider.create_user({"userName": "jim"})
        provider.create_user({"userName": "pam"})

        listing = provider.list_users(QueryParams.from_args({"filter": 'userName eq "PAM"'}))

        assert listing["totalResults"] == 1
        assert listing["Resources"][0]["userName"] == "pam"

    def test_list_is_capped_at_max_results(self, store):
        capped = Provider(store, base_url=BASE_URL, max_results=2)
        for name in ("jim", "pam", "dwight"):
            capped.create_user({"userName": name})
        capped.create_group({"displayName": "Sales Reps"})

        users = capped.list_users()
        assert users["totalResults"] == 3
        assert users["itemsPerPage"] == 2
        assert len(users["Resources"]) == 2

        groups = capped.list_groups()
        assert groups["totalResults"] == 1
        assert len(groups["Resources"]) == 1

    def test_list_users_with_group_filter_is_invalid(self, provider):
        with pytest.raises(ScimError) as exc_info:
            provider.list_users(QueryParams.from_args({"filter": 'displayName eq "x"'}))
        assert exc_info.value.scim_type == "invalidFilter"

    def test_delete_missing_user(self, provider):
        with pytest.raises(ScimError) as exc_info:
            provider.delete_user("nope")
        assert exc_info.value.status == 404


class TestPatchUser:
    def test_patch_active(self, provider):
        user = provider.create_user({"userName": "jim", "active": True})
        patched = provider.patch_user(user["id"], patch({"op": "replace", "value": {"active": False}}))
        assert patched["active"] is False
        assert provider.get_user(user["id"])["active"] is False

    def test_patch_keeps_external_id(self, provider):
        user = provider.create_user({"userName": "jim", "externalId": "ext"})
        patched = provider.patch_user(user["id"], patch({"op": "replace", "path": "active", "value": False}))
        assert patched["externalId"] == "ext"

    def test_patch_that_changes_nothing_keeps_last_modified(self, provider):
        user = provider.create_user({"userName": "jim", "active": True})
        patched = provider.patch_user(user["id"], patch({"op": "replace", "value": {"active": True}}))
        assert patched["meta"]["lastModified"] == user["meta"]["lastModified"]

    def test_patch_missing_user_is_404_before_body_checks(self, provider):
        with pytest.raises(ScimError) as exc_info:
            provider.patch_user("nope", {"schemas": ["wrong"]})
        assert exc_info.value.status == 404

    def test_bad_schema_is_invalid_syntax(self, provider):
        user = provider.create_user({"userName": "jim"})
        with pytest.raises(ScimError) as exc_info:
            provider.patch_user(user["id"], {"schemas": ["wrong"], "Operations": []})
        assert exc_info.value.status == 400
        assert exc_info.value.scim_type == "invalidSyntax"

    def test_unsupported_op_is_501(self, provider):
        user = provider.create_user({"userName": "jim"})
        with pytest.raises(ScimError) as exc_info:
            provider.patch_user(user["id"], patch({"op": "replace", "value": {"userName": "pam"}}))
        assert exc_info.value.status == 501

    @pytest.mark.parametrize(
        "operation",
        [
            {"op": "add", "path": "emails", "value": [{"value": "jim@example.com"}]},
            {"op": "add", "value": {"active": False}},
            {"op": "remove", "path": "active"},
            {"op": "Remove", "path": "members"},
        ],
    )
    def test_add_and_remove_are_501_whatever_the_path(self, provider, operation):
        user = provider.create_user({"userName": "jim", "active": True})
        with pytest.raises(ScimError) as exc_info:
            provider.patch_user(user["id"], patch(operation))
        assert exc_info.value.status == 501
        assert provider.get_user(user["id"])["active"] is True

    def test_replace_path_other_than_active_is_ignored(self, provider):
        user = provider.create_user({"userName": "jim", "active": True})
        patched = provider.patch_user(user["id"], patch({"op": "replace", "path": "members", "value": {"active": False}}))
        assert patched["active"] is False

    def test_empty_operations_is_a_no_op(self, provider):
        user = provider.create_user({"userName": "jim", "active": True})
        patched = provider.patch_user(user["id"], patch())
        assert patched == user


class TestGroups:
    def test_group_members_and_user_groups(self, provider):
        jim = provider.create_user({"userName": "jim"})
        group = provider.create_group({"displayName": "Sales", "members": [{"value": jim["id"]}]})

        assert group["members"] == [{"type": "User", "value": jim["id"]}]
        assert provider.get_user(jim["id"])["groups"] == [
            {"type": "direct", "value": group["id"], "display": "Sales"}
        ]

    def test_empty_members_are_omitted(self, provider):
        group = provider.create_group({"displayName": "Sales", "members": []})
        assert "members" not in group

    def test_replace_missing_group_with_bad_body_is_404(self, provider):
        with pytest.raises(ScimError) as exc_info:
            provider.replace_group("nope", {"members": "not-a-list"})
        assert exc_info.value.status == 404

    def test_patch_add_then_remove(self, provider):
        jim = provider.create_user({"userName": "jim"})
        dwight = provider.create_user({"userName": "dwight"})
        group = provider.create_group({"displayName": "Sales"})

        added = provider.patch_group(group["id"], patch({
            "op": "add",
            "path": "members",
            "value": [{"value": jim["id"]}, {"value": dwight["id"]}],
        }))
        assert [m["value"] for m in added["members"]] == [jim["id"], dwight["id"]]

        removed = provider.patch_group(group["id"], patch({
            "op": "remove",
            "path": f'members[value eq "{jim["id"]}"]',
        }))
        assert [m["value"] for m in removed["members"]] == [dwight["id"]]
        assert "groups" not in provider.get_user(jim["id"])

    def test_patch_add_unknown_member_is_404_and_atomic(self, provider):
        jim = provider.create_user({"userName": "jim"})
        group = provider.create_group({"displayName": "Sales"})

        with pytest.raises(ScimError) as exc_info:
            provider.patch_group(group["id"], patch(
                {"op": "add", "path": "members", "value": [{"value": jim["id"]}]},
                {"op": "add", "path": "members", "value": [{"value": "missing"}]},
            ))

        assert exc_info.value.status == 404
        assert "members" not in provider.get_group(group["id"])
        assert "groups" not in provider.get_user(jim["id"])

    def test_idempotent_add_keeps_last_modified(self, provider):
        jim = provider.create_user({"userName": "jim"})
        group = provider.create_group({"displayName": "Sales", "members": [{"value": jim["id"]}]})

        again = provider.patch_group(group["id"], patch(
            {"op": "add", "path": "members", "value": [{"value": jim["id"]}]}
        ))

        assert again["meta"]["lastModified"] == group["meta"]["lastModified"]

    def test_patch_display_name_conflict(self, provider):
        provider.create_group({"displayName": "Admins"})
        group = provider.create_group({"displayName": "Sales"})

        with pytest.raises(ScimError) as exc_info:
            provider.patch_group(group["id"], patch(
                {"op": "replace", "value": {"id": group["id"], "displayName": "admins"}}
            ))
        assert exc_info.value.status == 409

    def test_patch_members_of_deleted_user_is_404(self, provider):
        jim = provider.create_user({"userName": "jim"})
        pam = provider.create_user({"userName": "pam"})
        group = provider.create_group({"displayName": "Sales", "members": [{"value": jim["id"]}]})
        provider.delete_user(jim["id"])

        # The stale reference is re-asserted by the full-overwrite replace
        with pytest.raises(ScimError) as exc_info:
            provider.patch_group(group["id"], patch(
                {"op": "add", "path": "members", "value": [{"value": pam["id"]}]}
            ))
        assert exc_info.value.status == 404


class FailingStore(InMemoryProviderStore):
    def get_user(self, user_id):
        raise StoreError("database is on fire")

    def list_groups(self, filter_op=None):
        raise RuntimeError("connection reset")


class TestStoreErrorTranslation:
    def test_internal_errors_become_generic_500(self, caplog):
        provider = Provider(FailingStore(), base_url=BASE_URL)

        with caplog.at_level(logging.ERROR, logger="scim_provider.core.provider"):
            with pytest.raises(ScimError) as exc_info:
                provider.get_user("u1")

        assert exc_info.value.status == 500
        assert exc_info.value.detail == "get user by id u1 failed!"
        assert "database is on fire" not in exc_info.value.detail
        assert "database is on fire" in caplog.text
        assert isinstance(exc_info.value.__cause__, StoreError)

    def test_any_exception_is_translated(self):
        provider = Provider(FailingStore(), base_url=BASE_URL)
        with pytest.raises(ScimError) as exc_info:
            provider.list_groups()
        assert exc_info.value == ScimError.internal_error("list groups failed!")

    def test_protocol_errors_pass_through(self, provider):
        provider.create_user({"userName": "jim"})
        with pytest.raises(ScimError) as exc_info:
            provider.create_user({"userName": "JIM"})
        assert exc_info.value.status == 409


class StaleReadStore(InMemoryProviderStore):
    """Serves every group read from a pinned snapshot, as two concurrent
    PATCHes that both read before either writes would see it."""

    def __init__(self):
        super().__init__()
        self.pinned = {}

    def get_group(self, group_id):
        if group_id in self.pinned:
            return copy.deepcopy(self.pinned[group_id])
        return super().get_group(group_id)


class TestConcurrentPatch:
    def test_later_patch_from_the_same_base_wins(self):
        store = StaleReadStore()
        provider = Provider(store, base_url=BASE_URL)
        jim = provider.create_user({"userName": "jim"})
        pam = provider.create_user({"userName": "pam"})
        group = provider.create_group({"displayName": "Sales"})
        store.pinned[group["id"]] = store.get_group(group["id"])

        provider.patch_group(group["id"], patch({"op": "add", "path": "members", "value": [{"value": jim["id"]}]}))
        provider.patch_group(group["id"], patch({"op": "add", "path": "members", "value": [{"value": pam["id"]}]}))
        del store.pinned[group["id"]]

        # No version check on commit: the first add is lost
        assert [m["value"] for m in provider.get_group(group["id"])["members"]] == [pam["id"]]
        assert "groups" not in provider.get_user(jim["id"])
        assert provider.get_user(pam["id"])["groups"][0]["value"] == group["id"]


def test_state_is_exposed(provider):
    provider.create_user({"userName": "jim"})
    assert len(provider.state()["users"]) == 1
