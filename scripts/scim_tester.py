"""End-to-end conformance client for a running SCIM 2.0 server.

Walks a fixed scenario against a live server (which must start empty):
404s for unknown ids, user create/conflict/list/filter/replace/patch,
group create/conflict/replace/patch, and bidirectional membership across
PUT, POST and DELETE.

Usage:
    python scripts/scim_tester.py --url http://127.0.0.1:5000/scim/v2
    python scripts/scim_tester.py --url https://host/scim/v2 --bearer "$SCIM_STATIC_TOKEN"

Prints SUCCESS, or exits non-zero naming the failing step.
"""
from __future__ import annotations
import argparse
import sys
import uuid
from pathlib import Path
from typing import Any, Optional

import requests

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from scim_provider.core.urn import GROUP_URN, PATCHOP_URN, USER_URN

DEFAULT_URL = "http://127.0.0.1:5000/scim/v2"
TIMEOUT_SECONDS = 10


class TesterError(Exception):
    """A conformance check failed."""


def check(condition: bool, message: str) -> None:
    if not condition:
        raise TesterError(message)


def patch_body(*operations: dict) -> dict:
    return {"schemas": [PATCHOP_URN], "Operations": list(operations)}


def member_ids(resource: dict, field: str = "members") -> list[str]:
    return [entry.get("value") for entry in resource.get(field) or []]


def comparable(resource: dict) -> dict:
    """Resource without server metadata, for before/after comparisons."""
    return {key: value for key, value in resource.items() if key not in ("meta", "schemas")}


class ScimTester:
    """Runs the conformance scenario against one base URL."""

    def __init__(self, url: str, bearer: Optional[str] = None):
        self.url = url.rstrip("/")
        self.session = requests.Session()
        self.session.headers["Content-Type"] = "application/scim+json"
        if bearer:
            self.session.headers["Authorization"] = f"Bearer {bearer}"

    # ─────────────────────────────────────────────────────────────────────
    # HTTP helpers
    # ─────────────────────────────────────────────────────────────────────

    def request(self, method: str, path: str, body: Any = None, **kwargs) -> requests.Response:
        return self.session.request(
            method, f"{self.url}{path}", json=body, timeout=TIMEOUT_SECONDS, **kwargs
        )

    def expect(self, response: requests.Response, status: int, what: str) -> None:
        check(
            response.status_code == status,
            f"{what} returned {response.status_code} not {status}: {response.text[:200]}",
        )

    def resource(self, response: requests.Response, schema: str) -> dict:
        body = response.json()
        check(schema in body.get("schemas", []), f"response does not contain {schema} schema")
        return body

    def resources(self, response: requests.Response) -> list[dict]:
        body = response.json()
        resources = body.get("Resources", [])
        check(
            body.get("totalResults") == len(resources),
            f"total results {body.get('totalResults')} does not match resources list length {len(resources)}",
        )
        return resources

    def expect_error(self, response: requests.Response, status: int, scim_type: Optional[str], what: str) -> None:
        self.expect(response, status, what)
        error = response.json()
        check(error.get("status") == str(status), f"{what}: SCIM error status is {error.get('status')}")
        if scim_type is not None:
            check(error.get("scimType") == scim_type, f"{what}: scimType is {error.get('scimType')} not {scim_type}")

    # ─────────────────────────────────────────────────────────────────────
    # Scenario
    # ─────────────────────────────────────────────────────────────────────

    def run(self) -> None:
        self._step("nonexistent_resource_tests", self.nonexistent_resource_tests)
        dwight = self._step("create_user_tests", self.create_user_tests)
        jim = self._step("create_jim_user", self.create_jim_user)
        self._step("list_users_test", lambda: self.list_users_test(dwight, jim))
        self._step("list_users_with_filter_test", lambda: self.list_users_with_filter_test(jim))
        self._step("replace_user_test", lambda: self.replace_user_test(jim))
        self._step("patch_user_test", lambda: self.patch_user_test(jim))
        sales_reps = self._step("create_empty_group", self.create_empty_group)
        self._step("replace_group_test", lambda: self.replace_group_test(sales_reps))
        self._step("patch_group_test", lambda: self.patch_group_test(sales_reps, jim, dwight))
        self._step("membership_test", lambda: self.membership_test(dwight, jim))

    def _step(self, name: str, step):
        try:
            return step()
        except TesterError as exc:
            raise TesterError(f"{name}: {exc}") from exc

    def nonexistent_resource_tests(self) -> None:
        random_id = str(uuid.uuid4())

        for endpoint, body in (("Users", {"userName": "notblank"}), ("Groups", {"displayName": "notblank"})):
            path = f"/{endpoint}/{random_id}"
            self.expect(self.request("GET", path), 404, f"GET of non-existent {endpoint}")
            self.expect(self.request("PUT", path, body), 404, f"PUT of non-existent {endpoint}")
            self.expect(self.request("DELETE", path), 404, f"DELETE of non-existent {endpoint}")

    def create_user_tests(self) -> dict:
        body = {"userName": "dschrute", "externalId": "dschrute@dundermifflin.com"}

        response = self.request("POST", "/Users", body)
        self.expect(response, 201, "POST to /Users")
        user = self.resource(response, USER_URN)

        check(user["userName"] == "dschrute", f"user name of test user is {user['userName']}, not dschrute")
        check(
            user.get("externalId") == "dschrute@dundermifflin.com",
            f"external id of test user is {user.get('externalId')}",
        )

        # RFC 7644 3.3: duplicate userName is 409 with scimType uniqueness
        self.expect_error(self.request("POST", "/Users", body), 409, "uniqueness", "conflicting POST")
        return comparable(user)

    def create_jim_user(self) -> dict:
        body = {"userName": "jhalpert", "externalId": "jhalpert@dundermifflin.com"}
        response = self.request("POST", "/Users", body)
        self.expect(response, 201, "POST to /Users")
        return comparable(self.resource(response, USER_URN))

    def list_users_test(self, dwight: dict, jim: dict) -> None:
        response = self.request("GET", "/Users")
        self.expect(response, 200, "listing users")
        users = [comparable(user) for user in self.resources(response)]

        check(len(users) == 2, f"users length is {len(users)}, not 2")
        check(dwight in users, "users list does not contain dwight")
        check(jim in users, "users list does not contain jim")

    def list_users_with_filter_test(self, jim: dict) -> None:
        response = self.request("GET", "/Users", params={"filter": f'username eq "{jim["userName"]}"'})
        self.expect(response, 200, "listing users with filter")
        users = [comparable(user) for user in self.resources(response)]

        check(len(users) == 1, f"users length is {len(users)}, not 1")
        check(jim in users, "users list does not contain jim")

    def replace_user_test(self, jim: dict) -> None:
        path = f"/Users/{jim['id']}"
        before = self.resource(self.request("GET", path), USER_URN)

        response = self.request("PUT", path, {"userName": "jhalpert", "externalId": "rpark@dundermifflin.com"})
        self.expect(response, 200, "PUT")
        new_user = self.resource(response, USER_URN)
        check(comparable(new_user) != jim, "user PUT didn't work, same user returned")

        current = self.resource(self.request("GET", path), USER_URN)
        check(comparable(current) == comparable(new_user), "new user not returned after PUT")
        check(
            current["meta"]["lastModified"] != before["meta"]["lastModified"],
            "lastModified didn't change after PUT",
        )

        # Revert the change
        response = self.request("PUT", path, jim)
        self.expect(response, 200, "revert PUT")
        check(comparable(self.resource(response, USER_URN)) == jim, "user revert PUT didn't work")

        # Taking another user's userName is a conflict
        self.expect_error(
            self.request("PUT", path, {"userName": "dschrute", "externalId": "jhalpert@dundermifflin.com"}),
            409,
            "uniqueness",
            "PUT with duplicate userName",
        )

        # Omitted active and externalId are cleared
        response = self.request("PUT", path, {"userName": "jhalpert"})
        self.expect(response, 200, "PUT without optional fields")
        cleared = self.resource(response, USER_URN)
        check("active" not in cleared, f"active should be absent, it's {cleared.get('active')}")
        check("externalId" not in cleared, f"externalId should be absent, it's {cleared.get('externalId')}")

    def patch_user_test(self, jim: dict) -> None:
        path = f"/Users/{jim['id']}"

        for active in (False, True):
            response = self.request("PATCH", path, patch_body({"op": "replace", "value": {"active": active}}))
            self.expect(response, 200, "PATCH")
            user = self.resource(response, USER_URN)
            check(user.get("active") is active, f"users active field is not {active}")

    def create_empty_group(self) -> dict:
        body = {"displayName": "Sales Reps", "externalId": "sales_reps", "members": []}

        response = self.request("POST", "/Groups", body)
        self.expect(response, 201, "POST to /Groups")
        group = self.resource(response, GROUP_URN)

        check(group["displayName"] == "Sales Reps", f"display name of test group is {group['displayName']}")
        check(group.get("externalId") == "sales_reps", f"external id of test group is {group.get('externalId')}")

        self.expect(self.request("POST", "/Groups", body), 409, "conflicting POST")
        return comparable(group)

    def replace_group_test(self, group: dict) -> None:
        path = f"/Groups/{group['id']}"
        before = self.resource(self.request("GET", path), GROUP_URN)

        # Leaving out externalId clears it
        response = self.request("PUT", path, {"displayName": "Sales Reps"})
        self.expect(response, 200, "PUT")
        new_group = self.resource(response, GROUP_URN)
        check("externalId" not in new_group, f"group's externalId should be absent, it's {new_group.get('externalId')}")

        current = self.resource(self.request("GET", path), GROUP_URN)
        check(comparable(current) == comparable(new_group), "new group not returned after PUT")
        check(
            current["meta"]["lastModified"] != before["meta"]["lastModified"],
            "lastModified didn't change after PUT",
        )

        response = self.request("PUT", path, group)
        self.expect(response, 200, "revert PUT")
        check(comparable(self.resource(response, GROUP_URN)) == group, "group revert PUT didn't work")

    def patch_group_test(self, group: dict, jim: dict, dwight: dict) -> None:
        path = f"/Groups/{group['id']}"

        for display_name in ("Radiants", group["displayName"]):
            response = self.request(
                "PATCH",
                path,
                patch_body({"op": "replace", "value": {"id": group["id"], "displayName": display_name}}),
            )
            self.expect(response, 200, "PATCH displayName")
            patched = self.resource(response, GROUP_URN)
            check(patched["displayName"] == display_name, f"group displayName is {patched['displayName']}")

        stored = self.resource(self.request("GET", path), GROUP_URN)
        check(not member_ids(stored), f"group members should be empty but found {stored.get('members')}")

        response = self.request("PATCH", path, patch_body({
            "op": "add",
            "path": "members",
            "value": [
                {"value": jim["id"], "display": jim["userName"]},
                {"value": dwight["id"], "display": dwight["userName"]},
            ],
        }))
        self.expect(response, 200, "PATCH add members")
        patched = self.resource(response, GROUP_URN)
        for user in (jim, dwight):
            check(
                {"type": "User", "value": user["id"]} in patched.get("members", []),
                f"group members should contain {user['id']} but found {patched.get('members')}",
            )

        response = self.request(
            "PATCH", path, patch_body({"op": "remove", "path": f'members[value eq "{jim["id"]}"]'})
        )
        self.expect(response, 200, "PATCH remove member")
        remaining = member_ids(self.resource(response, GROUP_URN))
        check(jim["id"] not in remaining, f"group members should not contain {jim['id']}")
        check(len(remaining) == 1, f"group members should only contain 1 member but found {len(remaining)}")

        response = self.request("PATCH", path, patch_body({"op": "remove", "path": "members"}))
        self.expect(response, 200, "PATCH clear members")
        check(not member_ids(self.resource(response, GROUP_URN)), "group members should be empty")

    def membership_test(self, dwight: dict, jim: dict) -> None:
        response = self.request("GET", "/Groups")
        self.expect(response, 200, "listing groups")
        groups = self.resources(response)
        check(len(groups) == 1, "more than one group returned!")
        check(groups[0]["displayName"] == "Sales Reps", "unexpected group returned!")
        check(not member_ids(groups[0]), "existing Sales Reps group not empty!")
        sales_reps_id = groups[0]["id"]

        for user in self.resources(self.request("GET", "/Users")):
            check(not user.get("groups"), f"existing user {user['id']} groups not empty!")

        path = f"/Groups/{sales_reps_id}"

        # Unknown member id is a 404 and changes nothing
        response = self.request("PUT", path, {
            "schemas": [GROUP_URN],
            "displayName": "Sales Reps",
            "members": [{"value": str(uuid.uuid4())}],
        })
        self.expect(response, 404, "PUT with non-existent user")

        response = self.request("PUT", path, {
            "schemas": [GROUP_URN],
            "displayName": "Sales Reps",
            "members": [{"value": jim["id"]}],
        })
        self.expect(response, 200, "PUT with first user")

        self._expect_user_groups(jim, [sales_reps_id])
        group = self.resource(self.request("GET", path), GROUP_URN)
        check(member_ids(group) == [jim["id"]], f"expected group members [jim] not {member_ids(group)}")
        check(group["members"][0].get("type") in (None, "User"), "expected group's member to have resource type User")

        response = self.request("PUT", path, {
            "schemas": [GROUP_URN],
            "displayName": "Sales Reps",
            "members": [{"value": jim["id"]}, {"value": dwight["id"], "type": "User"}],
        })
        self.expect(response, 200, "PUT with both users")
        group = self.resource(self.request("GET", path), GROUP_URN)
        check(
            sorted(member_ids(group)) == sorted([jim["id"], dwight["id"]]),
            f"expected both users in group, found {member_ids(group)}",
        )

        response = self.request("POST", "/Groups", {
            "schemas": [GROUP_URN],
            "displayName": "Assistant to the Assistant to the Regional Manager",
            "members": [{"value": dwight["id"]}],
        })
        self.expect(response, 201, "POST for aarm group")
        aarm = self.resource(response, GROUP_URN)
        check(member_ids(aarm) == [dwight["id"]], f"AARM group members are {member_ids(aarm)}")

        self._expect_user_groups(dwight, [sales_reps_id, aarm["id"]])
        self._expect_user_groups(jim, [sales_reps_id])

        self.expect(self.request("DELETE", f"/Groups/{aarm['id']}"), 204, "DELETE for group")
        self._expect_user_groups(dwight, [sales_reps_id])

    def _expect_user_groups(self, user: dict, group_ids: list[str]) -> None:
        response = self.request("GET", f"/Users/{user['id']}")
        self.expect(response, 200, "GET for user")
        found = member_ids(self.resource(response, USER_URN), field="groups")
        check(
            sorted(found) == sorted(group_ids),
            f"{user['userName']}'s groups should be {group_ids}, not {found}",
        )


def main() -> None:
    """Command-line entry point."""
    parser = argparse.ArgumentParser(description="SCIM 2.0 conformance test client")
    parser.add_argument("--url", default=DEFAULT_URL, help=f"SCIM base URL (default: {DEFAULT_URL})")
    parser.add_argument("--bearer", default=None, help="Bearer token sent in the Authorization header")
    args = parser.parse_args()

    tester = ScimTester(args.url, bearer=args.bearer)
    try:
        tester.run()
    except TesterError as exc:
        print(f"FAILED: {exc}", file=sys.stderr)
        sys.exit(1)
    except requests.RequestException as exc:
        print(f"FAILED: could not reach {args.url}: {exc}", file=sys.stderr)
        sys.exit(2)

    print("SUCCESS")


if __name__ == "__main__":
    main()
