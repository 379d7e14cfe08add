from fastapi.testclient import TestClient

from propass import routes_redeem
from propass.app import app
from propass.errors import StoreUnavailable
from propass.sessions import SESSION_COOKIE_NAME


def test_scenario_a_redeem_with_session(client, login):
    login(client, "alice@example.com")
    assert client.get("/auth/session").json()["plan"] == "free"

    resp = client.post("/redeem", json={"code": "FREEPRO2024"})
    assert resp.status_code == 200, resp.text
    assert resp.json() == {"success": True, "plan": "pro", "alreadyApplied": False}

    entitlements = client.get("/api/entitlements").json()
    assert entitlements == {"plan": "pro", "pro": True, "grants": ["code:FREEPRO2024"]}
    assert client.get("/auth/session").json()["plan"] == "pro"


def test_scenario_b_lowercase_code(client, login):
    login(client, "bob@example.com")
    resp = client.post("/redeem", json={"code": "freepro2024"})
    assert resp.status_code == 200
    assert resp.json()["plan"] == "pro"
    assert client.get("/api/entitlements").json()["grants"] == ["code:FREEPRO2024"]


def test_scenario_c_wrong_code(client, login):
    login(client, "carol@example.com")
    for code in ["WRONGCODE", "", "   "]:
        resp = client.post("/redeem", json={"code": code})
        assert resp.status_code == 400
        assert resp.json() == {"message": "Invalid redeem code"}
    assert client.post("/redeem", json={}).status_code == 400
    for body in [{"json": {"code": 2024}}, {"json": {"code": ["FREEPRO2024"]}}, {}]:
        resp = client.post("/redeem", **body)
        assert resp.status_code == 400, resp.text
        assert resp.json() == {"message": "Invalid redeem code"}
    resp = client.post("/upgrade", json={"hasProCode": True, "code": 2024})
    assert resp.json() == {"message": "Invalid redeem code"}
    assert client.post("/upgrade").json() == {"message": "Invalid upgrade request"}
    assert client.get("/api/entitlements").json() == {"plan": "free", "pro": False, "grants": []}


def test_scenario_d_anonymous_redeem_requires_sign_in(client):
    resp = client.post("/redeem", json={"code": "FREEPRO2024"})
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "requiresSignIn": True}
    assert SESSION_COOKIE_NAME not in resp.cookies


def test_redeem_twice_reports_already_applied(client, login):
    login(client, "dup@example.com")
    client.post("/redeem", json={"code": "FREEPRO2024"})
    resp = client.post("/redeem", json={"code": " FreePro2024 "})
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "plan": "pro", "alreadyApplied": True}
    assert client.get("/api/entitlements").json()["grants"] == ["code:FREEPRO2024"]


def test_legacy_route_aliases(client, login):
    assert client.post("/api/redeem-code", json={"code": "nope"}).status_code == 400
    login(client, "legacy@example.com")
    assert client.post("/api/redeem-code", json={"code": "FREEPRO2024"}).json()["plan"] == "pro"
    assert client.post("/api/upgrade-plan", json={"hasProCode": True}).json() == {"success": True, "plan": "pro"}


def test_upgrade_requires_session(client):
    resp = client.post("/upgrade", json={"hasProCode": True, "code": "FREEPRO2024"})
    assert resp.status_code == 401
    assert resp.json() == {"message": "Unauthorized"}


def test_upgrade_rules(client, login):
    login(client, "dana@example.com")

    resp = client.post("/upgrade", json={"hasProCode": False})
    assert resp.status_code == 400
    assert resp.json() == {"message": "Invalid upgrade request"}

    # The flag alone never upgrades a free account.
    resp = client.post("/upgrade", json={"hasProCode": True})
    assert resp.status_code == 400
    assert resp.json() == {"message": "Redeem code is required"}
    assert client.get("/api/entitlements").json()["plan"] == "free"

    resp = client.post("/upgrade", json={"hasProCode": True, "code": "WRONGCODE"})
    assert resp.status_code == 400
    assert resp.json() == {"message": "Invalid redeem code"}

    resp = client.post("/upgrade", json={"hasProCode": True, "code": "freepro2024"})
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "plan": "pro"}
    assert client.get("/auth/session").json()["plan"] == "pro"

    # Once pro, the bare flag is a harmless refresh.
    assert client.post("/upgrade", json={"hasProCode": True}).status_code == 200


def test_session_update_ignores_plan_hint(client, login):
    login(client, "hint@example.com")
    resp = client.post("/auth/session", json={"plan": "pro"})
    assert resp.status_code == 200
    assert resp.json()["plan"] == "free"
    assert client.get("/auth/session").json()["plan"] == "free"
    assert client.get("/api/entitlements").json()["plan"] == "free"


def test_session_endpoints_require_session(client):
    assert client.get("/auth/session").status_code == 401
    assert client.post("/auth/session", json={}).status_code == 401
    assert client.get("/api/entitlements").status_code == 401


def test_bearer_token_is_accepted(client, login):
    login(client, "bearer@example.com")
    token = client.cookies.get(SESSION_COOKIE_NAME)
    assert token

    with TestClient(app) as other:
        resp = other.get("/auth/session", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200
        assert resp.json()["email"] == "bearer@example.com"
        assert other.get("/auth/session", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_logout_clears_session(client, login):
    login(client, "bye@example.com")
    assert client.post("/auth/logout").status_code == 204
    assert client.get("/auth/session").status_code == 401


def test_magic_link_is_single_use(client):
    resp = client.post("/auth/request-link", json={"email": "once@example.com"})
    token = resp.json()["dev_link"].split("token=", 1)[1]
    assert client.get("/auth/callback", params={"token": token}, follow_redirects=False).status_code == 302
    second = client.get("/auth/callback", params={"token": token}, follow_redirects=False)
    assert second.status_code == 400
    assert second.json() == {"message": "Token already used."}
    bad = client.get("/auth/callback", params={"token": "forged"}, follow_redirects=False)
    assert bad.json() == {"message": "Invalid magic link token."}


def test_store_unavailable_maps_to_503(client, login, monkeypatch):
    login(client, "outage@example.com")

    def unavailable(*_args, **_kwargs):
        raise StoreUnavailable()

    monkeypatch.setattr(routes_redeem, "apply_grant", unavailable)
    resp = client.post("/redeem", json={"code": "FREEPRO2024"})
    assert resp.status_code == 503
    assert resp.json() == {"message": "Entitlement store unavailable"}


def test_unexpected_failure_maps_to_500(client, login, monkeypatch):
    login(client, "boom@example.com")

    def explode(*_args, **_kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(routes_redeem, "apply_grant", explode)
    resp = client.post("/redeem", json={"code": "FREEPRO2024"})
    assert resp.status_code == 500
    assert resp.json() == {"message": "Internal server error"}
    assert resp.headers.get("X-Request-ID")


def test_health(client):
    assert client.get("/healthz").json() == {"ok": True}
    assert client.get("/healthz/db").json() == {"db": "ok"}
