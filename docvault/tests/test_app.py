from fastapi.testclient import TestClient

from docvault.app.config import Settings
from docvault.app.deps import build_services
from docvault.app.domain import payload as codec
from docvault.app.domain.crypto import hash_document
from docvault.app.domain.documents import DocumentRecord
from docvault.app.domain.models import Role
from docvault.app.infra.notify import OutboxSender
from docvault.app.main import app, create_app


def setup_client():
    settings = Settings(database_url="sqlite://", kdf_iterations=1_000, verify_base_url="https://verify.test/verify")
    services = build_services(settings, notifier=OutboxSender(), bcrypt_rounds=4)
    services.accounts.create_principal(Role.ADMIN, "root", "password123")
    return TestClient(create_app(services)), services


def login(client, role, login_name, password="password123"):
    response = client.post(f"/auth/{role}/login", json={"login": login_name, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


def test_app_title():
    assert app.title == "DocVault API"


def test_router_tags_present():
    tags = {tag for route in app.routes for tag in getattr(route, "tags", [])}
    assert {"auth", "registry", "verify", "admin"}.issubset(tags)


def test_admin_onboards_authority_which_anchors_hashes():
    client, services = setup_client()
    with client:
        admin = login(client, "admin", "root")
        created = client.post(
            "/admin/authorities",
            json={"login": "registrar", "password": "password123", "organization": "Registrar General"},
            headers=admin,
        )
        assert created.status_code == 201
        assert created.json()["role"] == "authority"

        authority = login(client, "authority", "registrar")
        digest = hash_document("Birth Certificate")
        first = client.post("/registry/hashes", json={"hash": digest}, headers=authority)
        second = client.post("/registry/hashes", json={"hash": "0x" + digest}, headers=authority)
        assert first.status_code == 201
        assert first.json()["already_anchored"] is False
        assert second.json()["already_anchored"] is True
        assert second.json()["anchored_at_block"] == first.json()["anchored_at_block"]

        lookup = client.get(f"/registry/hashes/{digest}")
        assert lookup.json()["exists"] is True

        feed = client.get("/registry/transactions", headers=admin)
        assert [entry["hash"] for entry in feed.json()] == ["0x" + digest]


def test_malformed_hash_is_a_format_error():
    client, _ = setup_client()
    with client:
        response = client.get("/registry/hashes/1234")
        assert response.status_code == 422
        assert response.json()["code"] == "FormatError"


def test_wrong_role_is_denied_and_audited():
    client, _ = setup_client()
    with client:
        registered = client.post(
            "/auth/users/register",
            json={"id_number": "200012345678", "password": "password123", "email": "nimal@example.org"},
        )
        assert registered.status_code == 201
        user = {"Authorization": f"Bearer {registered.json()['token']}"}

        denied = client.post("/registry/hashes", json={"hash": hash_document("x")}, headers=user)
        assert denied.status_code == 403
        assert denied.json()["code"] == "RoleMismatch"

        admin = login(client, "admin", "root")
        logs = client.get("/audit/logs", params={"action": "require_authority"}, headers=admin).json()
        assert len(logs) == 1
        assert logs[0]["allowed"] is False
        assert logs[0]["role"] == "user"


def test_logout_revokes_token():
    client, _ = setup_client()
    with client:
        admin = login(client, "admin", "root")
        assert client.get("/auth/admin/me", headers=admin).status_code == 200
        logout = client.post("/auth/admin/logout", headers=admin)
        assert logout.json()["token_version"] == 1

        revoked = client.get("/auth/admin/me", headers=admin)
        assert revoked.status_code == 401
        assert revoked.json()["code"] == "Revoked"
        assert client.get("/auth/admin/me").json()["code"] == "Malformed"


def test_verify_endpoint_with_passkey_retry():
    client, services = setup_client()
    record = DocumentRecord.create("ID-12345", "NIC", passkey="abc", **services.kdf)
    services.registry.anchor(record.plain_hash)
    url = codec.verification_url(codec.encode(record), services.settings.verify_base_url)

    with client:
        waiting = client.post("/verify", json={"input": url}).json()
        assert waiting["state"] == "awaiting_passkey"
        assert waiting["retryable"] is True

        wrong = client.post("/verify", json={"input": url, "passkey": "wrong"}).json()
        assert wrong["state"] == "awaiting_passkey"
        assert wrong["reason"] == "DecryptionFailed"
        assert wrong["verified"] is False

        right = client.post("/verify", json={"input": url, "passkey": "abc"}).json()
        assert right["state"] == "verified"
        assert right["verified"] is True
        assert right["doc_id"] == record.id

        garbage = client.post("/verify", json={"input": "this is not a token"})
        assert garbage.status_code == 422


def test_verify_rejects_unanchored_document():
    client, _ = setup_client()
    record = DocumentRecord.create("never anchored", "NIC")
    with client:
        body = client.post("/verify", json={"input": codec.encode(record)}).json()
        assert body["state"] == "rejected"
        assert body["reason"] == "NotAnchored"


def test_qr_endpoint_renders_png():
    client, _ = setup_client()
    token = codec.encode(DocumentRecord.create("qr", "NIC"))
    with client:
        response = client.get("/verify/qr", params={"token": token})
        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert response.content.startswith(b"\x89PNG")
