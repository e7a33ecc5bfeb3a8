"""
HTTP tests for the ledger API.

Tests cover:
1. Login, logout and the current-admin endpoint
2. Distribution requests and their validation errors
3. Ledger listing, per-user lookup and CSV export
4. The authentication gate on every protected route
"""

import csv
import io
import pytest
from dataclasses import replace
from fastapi.testclient import TestClient

from ledger.api import create_app
from ledger.errors import StorageError
from ledger.models import MAX_AMOUNT, PLACEHOLDER_BALANCE
from ledger.service import CSV_HEADERS
from ledger.storage import InMemoryTransactionStore

from .conftest import ADMIN_PASSWORD, ADMIN_USERNAME


PROTECTED_ROUTES = [
    ("get", "/auth/me"),
    ("post", "/transactions"),
    ("get", "/transactions"),
    ("get", "/transactions/user/42"),
    ("get", "/transactions/export"),
]


class TestAuthEndpoints:
    """Tests for /auth routes."""

    def test_login_success(self, client, settings):
        """Test logging in as the seeded default admin."""
        r = client.post("/auth/login", json={"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD})

        assert r.status_code == 200
        body = r.json()
        assert body["admin"]["username"] == ADMIN_USERNAME
        assert body["admin"]["id"]
        assert "password" not in body["admin"]
        assert settings.session_cookie_name in r.cookies
        assert "httponly" in r.headers["set-cookie"].lower()

    def test_login_wrong_password(self, client):
        """Test that bad credentials give 401 and no cookie."""
        r = client.post("/auth/login", json={"username": ADMIN_USERNAME, "password": "wrong"})

        assert r.status_code == 401
        assert r.json() == {"message": "Invalid credentials"}
        assert "set-cookie" not in r.headers

    def test_login_unknown_user(self, client):
        """Test that an unknown user looks the same as a wrong password."""
        r = client.post("/auth/login", json={"username": "nobody", "password": ADMIN_PASSWORD})

        assert r.status_code == 401
        assert r.json() == {"message": "Invalid credentials"}

    def test_login_validation_error(self, client):
        """Test that missing or empty fields give 400 with field errors."""
        r = client.post("/auth/login", json={"username": ""})

        assert r.status_code == 400
        fields = {e["field"] for e in r.json()["errors"]}
        assert fields == {"username", "password"}

    def test_login_without_body(self, client):
        """Test that a missing body is reported against the body itself."""
        r = client.post("/auth/login")

        assert r.status_code == 400
        assert r.json()["errors"][0]["field"] == "body"

    def test_me(self, auth_client):
        """Test the current-admin profile including the display balance."""
        r = auth_client.get("/auth/me")

        assert r.status_code == 200
        admin = r.json()["admin"]
        assert admin["username"] == ADMIN_USERNAME
        assert admin["balance"] == PLACEHOLDER_BALANCE

    def test_me_when_admin_vanished(self, app, auth_client):
        """Test that a session for a deleted admin gives 404."""
        admin = app.state.credentials.find_by_username(ADMIN_USERNAME)
        app.state.credentials.admins.pop(admin.id)

        r = auth_client.get("/auth/me")

        assert r.status_code == 404
        assert r.json() == {"message": "Admin not found"}

    def test_logout(self, auth_client):
        """Test that logout ends the session."""
        r = auth_client.post("/auth/logout")

        assert r.status_code == 200
        assert r.json() == {"message": "Logout successful"}
        assert auth_client.get("/transactions").status_code == 401

    def test_logout_revokes_copied_token(self, app, settings):
        """Test that a token captured before logout stops working."""
        client = TestClient(app)
        r = client.post("/auth/login", json={"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD})
        token = r.cookies[settings.session_cookie_name]

        client.post("/auth/logout")

        replay = TestClient(app)
        replay.cookies.set(settings.session_cookie_name, token)
        assert replay.get("/auth/me").status_code == 401

    def test_logout_without_session(self, client):
        """Test that logging out anonymously is not an error."""
        assert client.post("/auth/logout").status_code == 200

    def test_tampered_cookie_rejected(self, app, settings):
        """Test that a cookie the server did not sign is rejected."""
        client = TestClient(app)
        client.cookies.set(settings.session_cookie_name, "forged.token.value")

        assert client.get("/auth/me").status_code == 401


class TestAuthGate:
    """Tests that every protected route requires a session."""

    @pytest.mark.parametrize("method, path", PROTECTED_ROUTES)
    def test_requires_session(self, client, method, path):
        """Test that anonymous callers get 401 and no data."""
        r = getattr(client, method)(path)

        assert r.status_code == 401
        assert r.json() == {"message": "Authentication required"}

    def test_gate_precedes_validation(self, client):
        """Test that bad parameters from an anonymous caller still give 401."""
        assert client.get("/transactions?dateFrom=yesterday").status_code == 401
        assert client.post("/transactions", json={"userUID": "", "ucAmount": 0}).status_code == 401

    def test_gate_precedes_body_parsing(self, client):
        """Test that a malformed JSON body from an anonymous caller still gives 401."""
        r = client.post("/transactions", content="{not json", headers={"Content-Type": "application/json"})

        assert r.status_code == 401
        assert r.json() == {"message": "Authentication required"}

    def test_anonymous_distribution_is_not_stored(self, app, client):
        """Test that a rejected anonymous write leaves the ledger unchanged."""
        client.post("/transactions", json={"userUID": "42", "ucAmount": 100})

        assert app.state.transactions.count() == 0


class TestDistributionEndpoint:
    """Tests for POST /transactions."""

    def test_distribute_and_list(self, auth_client):
        """Test the full login, distribute, list scenario."""
        r = auth_client.post("/transactions", json={"userUID": "42", "ucAmount": 100, "coinsAmount": 0})

        assert r.status_code == 200
        body = r.json()
        assert body["message"] == "Distribution successful"
        transaction = body["transaction"]
        assert transaction["userUID"] == "42"
        assert transaction["ucAmount"] == 100
        assert transaction["coinsAmount"] == 0
        assert transaction["status"] == "completed"
        assert transaction["adminUsername"] == ADMIN_USERNAME
        assert transaction["createdAt"]

        page = auth_client.get("/transactions", params={"limit": 10, "offset": 0}).json()
        assert page["transactions"][0]["id"] == transaction["id"]
        assert page["total"] >= 1
        assert page["limit"] == 10
        assert page["offset"] == 0

    def test_amounts_default_to_zero(self, auth_client):
        """Test that an omitted amount is recorded as zero."""
        r = auth_client.post("/transactions", json={"userUID": "42", "coinsAmount": 75})

        assert r.status_code == 200
        assert r.json()["transaction"]["ucAmount"] == 0

    def test_empty_uid(self, auth_client):
        """Test that an empty UID gives 400 naming userUID."""
        r = auth_client.post("/transactions", json={"userUID": "", "ucAmount": 5})

        assert r.status_code == 400
        body = r.json()
        assert body["message"] == "Validation error"
        assert [e["field"] for e in body["errors"]] == ["userUID"]

    def test_both_amounts_zero(self, app, auth_client):
        """Test that zero amounts give 400 naming the combined rule."""
        r = auth_client.post("/transactions", json={"userUID": "7", "ucAmount": 0, "coinsAmount": 0})

        assert r.status_code == 400
        errors = r.json()["errors"]
        assert errors[0]["type"] == "both_amounts_zero"
        assert errors[0]["field"] == "amounts"
        assert app.state.transactions.count() == 0

    def test_empty_body(self, auth_client):
        """Test that an empty body is a validation error, not a crash."""
        r = auth_client.post("/transactions")

        assert r.status_code == 400

    def test_malformed_json(self, auth_client):
        """Test that a body that is not JSON gives 400 naming the body."""
        r = auth_client.post("/transactions", content="{not json", headers={"Content-Type": "application/json"})

        assert r.status_code == 400
        assert r.json()["errors"] == [{"field": "body", "message": "JSON decode error", "type": "json_invalid"}]

    def test_non_object_body(self, auth_client):
        """Test that a JSON array is rejected."""
        r = auth_client.post("/transactions", json=[1, 2])

        assert r.status_code == 400
        assert r.json()["errors"][0]["field"] == "body"

    @pytest.mark.parametrize("database_url", [None, "sqlite://"])
    def test_amount_beyond_integer_column(self, settings, database_url):
        """Test that an oversized amount is a 400 on either store."""
        client = TestClient(create_app(settings=replace(settings, database_url=database_url)))
        client.post("/auth/login", json={"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD})

        for amount in (MAX_AMOUNT + 1, 10**20):
            r = client.post("/transactions", json={"userUID": "42", "ucAmount": amount})

            assert r.status_code == 400
            assert r.json()["errors"][0]["field"] == "ucAmount"
        assert client.app.state.transactions.count() == 0

    def test_negative_amount(self, auth_client):
        """Test that negative amounts are rejected."""
        r = auth_client.post("/transactions", json={"userUID": "42", "ucAmount": -5, "coinsAmount": 10})

        assert r.status_code == 400
        assert r.json()["errors"][0]["field"] == "ucAmount"

    def test_storage_failure_is_generic_500(self, settings):
        """Test that a storage fault gives an opaque 500."""

        class BrokenStore(InMemoryTransactionStore):
            def append(self, draft):
                raise StorageError("disk on fire at /var/lib/ledger")

        client = TestClient(create_app(settings=settings, transactions=BrokenStore()))
        client.post("/auth/login", json={"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD})

        r = client.post("/transactions", json={"userUID": "42", "ucAmount": 1})

        assert r.status_code == 500
        assert r.json() == {"message": "Internal server error"}


class TestLedgerEndpoints:
    """Tests for listing, lookup and export."""

    def distribute(self, client, uid, uc=0, coins=0):
        r = client.post("/transactions", json={"userUID": uid, "ucAmount": uc, "coinsAmount": coins})
        r.raise_for_status()
        return r.json()["transaction"]

    def test_default_paging(self, auth_client):
        """Test the default limit and offset."""
        page = auth_client.get("/transactions").json()

        assert page["limit"] == 50
        assert page["offset"] == 0
        assert page["total"] == 0

    def test_pagination(self, auth_client):
        """Test walking pages over the HTTP interface."""
        created = [self.distribute(auth_client, str(i), uc=i + 1) for i in range(5)]

        first = auth_client.get("/transactions", params={"limit": 2, "offset": 0}).json()
        second = auth_client.get("/transactions", params={"limit": 2, "offset": 2}).json()
        third = auth_client.get("/transactions", params={"limit": 2, "offset": 4}).json()

        ids = [t["id"] for page in (first, second, third) for t in page["transactions"]]
        assert ids == [t["id"] for t in reversed(created)]
        assert first["total"] == 5

    def test_filter_by_uid_param(self, auth_client):
        """Test the userUID filter on the listing."""
        self.distribute(auth_client, "A", uc=1)
        self.distribute(auth_client, "B", uc=1)

        page = auth_client.get("/transactions", params={"userUID": "A"}).json()

        assert page["total"] == 1
        assert page["transactions"][0]["userUID"] == "A"

    @pytest.mark.parametrize("params", [{"limit": "abc"}, {"limit": 0}, {"offset": -1}, {"offset": "abc"}, {"limit": ""}])
    def test_bad_paging_falls_back_to_defaults(self, auth_client, params):
        """Test that malformed or out-of-range paging params use limit 50, offset 0."""
        r = auth_client.get("/transactions", params=params)

        assert r.status_code == 200
        assert r.json()["limit"] == 50
        assert r.json()["offset"] == 0

    def test_zero_limit_returns_default_page(self, auth_client):
        """Test that limit=0 behaves like the default page size."""
        self.distribute(auth_client, "42", uc=1)

        page = auth_client.get("/transactions", params={"limit": 0}).json()

        assert page["limit"] == 50
        assert len(page["transactions"]) == 1

    @pytest.mark.parametrize("params", [{"dateFrom": "yesterday"}, {"dateFrom": "2024-02-01", "dateTo": "2024-01-01"}])
    def test_bad_filter_params(self, auth_client, params):
        """Test that malformed or inverted date filters give 400."""
        r = auth_client.get("/transactions", params=params)

        assert r.status_code == 400
        assert r.json()["errors"]

    def test_user_lookup(self, auth_client):
        """Test GET /transactions/user/{uid}."""
        self.distribute(auth_client, "A", uc=1)
        self.distribute(auth_client, "B", coins=1)
        latest = self.distribute(auth_client, "A", coins=2)

        r = auth_client.get("/transactions/user/A")

        assert r.status_code == 200
        transactions = r.json()["transactions"]
        assert len(transactions) == 2
        assert transactions[0]["id"] == latest["id"]

    def test_csv_export(self, auth_client):
        """Test the CSV download."""
        self.distribute(auth_client, "42", uc=100)
        self.distribute(auth_client, "43", coins=5)

        r = auth_client.get("/transactions/export")

        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/csv")
        assert "attachment; filename=transactions_" in r.headers["content-disposition"]
        rows = list(csv.reader(io.StringIO(r.text)))
        assert rows[0] == CSV_HEADERS
        assert [row[1] for row in rows[1:]] == ["43", "42"]

    def test_csv_export_filtered(self, auth_client):
        """Test the CSV download with a UID filter."""
        self.distribute(auth_client, "42", uc=100)
        self.distribute(auth_client, "43", coins=5)

        rows = list(csv.reader(io.StringIO(auth_client.get("/transactions/export", params={"userUID": "42"}).text)))

        assert [row[1] for row in rows[1:]] == ["42"]

    def test_health(self, client):
        """Test the unauthenticated health check."""
        assert client.get("/health").json()["status"] == "healthy"


class TestServerlessEntry:
    """Tests for the Mangum entrypoint."""

    def test_handler_reuses_module_app(self):
        """Test that the serverless module serves the one app under /api."""
        import ledger.api
        from api.index import app as served_app, handler

        assert served_app is ledger.api.app
        assert served_app.root_path == "/api"
        assert handler.app is served_app


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
