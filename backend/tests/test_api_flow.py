from fastapi.testclient import TestClient

from careloop.schemas import Role
from careloop.services import ai_responder
from careloop.services.auth_service import create_access_token

ALICE_PROFILE = {
    "age": 40,
    "gender": "Female",
    "height": 165,
    "weight": 92,
    "medication": "Ozempic (Semaglutide)",
    "dosage": "0.5mg",
    "conditions": ["type 2 diabetes"],
}


def _care_team(signup):
    return {
        "admin": signup("Root", "root@example.com", Role.ADMIN),
        "doctor": signup("Dr. Kim", "kim@example.com", Role.DOCTOR),
        "coach": signup("Coach Lee", "lee@example.com", Role.FITNESS_COACH),
        "alice": signup("Alice", "alice@example.com", Role.PATIENT),
    }


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_view_without_token_is_auth_screen(client):
    assert client.get("/view").json() == {"kind": "auth"}


def test_login_unknown_email_is_404(client):
    resp = client.post("/auth/login", json={"email": "nobody@example.com"})
    assert resp.status_code == 404
    assert resp.json()["detail"] == "User not found"


def test_signup_then_login_and_me(client, signup):
    alice = signup("Alice", "alice@example.com")
    resp = client.post("/auth/signup", json={"name": "Again", "email": "alice@example.com", "role": "DOCTOR"})
    assert resp.status_code == 400

    login = client.post("/auth/login", json={"email": "alice@example.com"})
    assert login.status_code == 200
    token = login.json()["access_token"]
    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.json()["id"] == alice["user"]["id"]

    assert client.get("/auth/me", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_token_for_unknown_user_is_rejected(client):
    token = create_access_token({"sub": "ghost0000", "role": "PATIENT"})
    resp = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401


def test_provider_send_to_missing_patient_is_400(client, signup):
    doctor = signup("Dr. Kim", "kim@example.com", Role.DOCTOR)
    resp = client.post("/chat/send", headers=doctor["headers"], json={"text": "hello", "patient_id": "nosuchpat"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No conversation selected"


def test_onboarding_flow(client, signup):
    alice = signup("Alice", "alice@example.com")
    headers = alice["headers"]

    options = client.get("/patient/onboarding/options").json()
    assert options["defaults"]["dosage"] == "0.25mg"
    assert options["defaults"]["medication"] == options["medications"][0]

    assert client.get("/view", headers=headers).json()["kind"] == "onboarding"

    resp = client.post("/patient/onboarding", headers=headers, json=ALICE_PROFILE)
    assert resp.status_code == 200
    assert resp.json()["onboarded"] is True
    assert resp.json()["profile"] == ALICE_PROFILE

    again = client.post("/patient/onboarding", headers=headers, json={**ALICE_PROFILE, "age": 41})
    assert again.status_code == 409

    view = client.get("/view", headers=headers).json()
    assert view["kind"] == "patient_chat"
    assert view["record"]["profile"]["age"] == 40


def test_patient_chat_with_ai_then_sos(client, signup, responder):
    team = _care_team(signup)
    alice = team["alice"]
    client.post("/patient/onboarding", headers=alice["headers"], json=ALICE_PROFILE)

    resp = client.post("/chat/send", headers=alice["headers"], json={"text": "I feel nauseous", "await_reply": True})
    assert resp.status_code == 200
    body = resp.json()
    assert body["ai_dispatched"] is True
    assert body["message"]["sender_role"] == "PATIENT"
    assert body["assistant"]["sender_role"] == "AI"
    assert body["assistant"]["text"] == "Stay hydrated."

    sos = client.post("/patient/sos", headers=alice["headers"])
    assert sos.json()["sos_active"] is True

    resp = client.post("/chat/send", headers=alice["headers"], json={"text": "emergency", "await_reply": True})
    body = resp.json()
    assert body["ai_dispatched"] is False
    assert body["assistant"] is None
    assert body["message"]["status"] == "sos"

    alice_id = alice["user"]["id"]
    history = client.get(f"/chat/history/{alice_id}", headers=alice["headers"]).json()
    assert history["sos_active"] is True
    assert [m["text"] for m in history["history"]] == ["I feel nauseous", "Stay hydrated.", "emergency"]
    assert len(responder.calls) == 1

    overview = client.get("/admin/overview", headers=team["admin"]["headers"]).json()
    assert overview["patients"][0]["status"] == "SOS ACTIVE"


def test_care_team_assignment_and_caseload(client, signup):
    team = _care_team(signup)
    alice_id = team["alice"]["user"]["id"]
    doctor, coach, admin = team["doctor"], team["coach"], team["admin"]

    # 배정 전: 케이스로드 비어 있고 대화 접근 불가
    assert client.get("/caseload", headers=doctor["headers"]).json() == []
    assert client.get(f"/chat/history/{alice_id}", headers=doctor["headers"]).status_code == 403

    assert client.post(
        "/admin/assign", headers=doctor["headers"],
        json={"patient_id": alice_id, "doctor_id": doctor["user"]["id"]},
    ).status_code == 403

    bad = client.post(
        "/admin/assign", headers=admin["headers"],
        json={"patient_id": alice_id, "doctor_id": coach["user"]["id"]},
    )
    assert bad.status_code == 400

    resp = client.post(
        "/admin/assign", headers=admin["headers"],
        json={"patient_id": alice_id, "doctor_id": doctor["user"]["id"], "coach_id": coach["user"]["id"]},
    )
    assert resp.status_code == 200
    assert resp.json()["assigned_doctor_id"] == doctor["user"]["id"]
    assert resp.json()["assigned_coach_id"] == coach["user"]["id"]

    caseload = client.get("/caseload", headers=doctor["headers"]).json()
    assert [c["patient_id"] for c in caseload] == [alice_id]
    assert caseload[0]["patient_name"] == "Alice"

    # 의료진은 대상 환자를 지정해야 함
    assert client.post("/chat/send", headers=doctor["headers"], json={"text": "hello"}).status_code == 400

    sent = client.post(
        "/chat/send", headers=coach["headers"],
        json={"text": "Aim for 90g protein today", "patient_id": alice_id},
    )
    assert sent.status_code == 200
    assert sent.json()["ai_dispatched"] is False

    view = client.get("/view", headers=doctor["headers"]).json()
    assert view["kind"] == "provider_caseload"
    assert view["active_patient"]["user_id"] == alice_id
    assert view["active_patient"]["messages"][0]["sender_role"] == "FITNESS_COACH"

    cleared = client.post("/admin/assign", headers=admin["headers"], json={"patient_id": alice_id})
    assert cleared.json()["assigned_doctor_id"] is None
    assert client.get("/caseload", headers=coach["headers"]).json() == []


def test_admin_updates_ai_instruction(client, signup, responder):
    team = _care_team(signup)
    admin, alice = team["admin"], team["alice"]

    assert client.get("/admin/ai-instruction", headers=alice["headers"]).status_code == 403

    resp = client.put(
        "/admin/ai-instruction", headers=admin["headers"],
        json={"ai_system_instruction": "Answer in one sentence."},
    )
    assert resp.json()["ai_system_instruction"] == "Answer in one sentence."
    assert client.get("/admin/ai-instruction", headers=admin["headers"]).json() == resp.json()

    client.post("/chat/send", headers=alice["headers"], json={"text": "hi", "await_reply": True})
    assert responder.calls[-1]["system_instruction"] == "Answer in one sentence."

    view = client.get("/view", headers=admin["headers"]).json()
    assert view["kind"] == "admin_console"
    assert view["config"]["ai_system_instruction"] == "Answer in one sentence."


def test_state_persists_across_restart(db_url, responder, monkeypatch):
    monkeypatch.setenv("ASYNC_DATABASE_URL", db_url)
    monkeypatch.delenv("KAFKA_BOOTSTRAP", raising=False)
    monkeypatch.setattr(ai_responder, "get_ai_response", responder)

    from careloop.main import app

    with TestClient(app) as first:
        body = first.post("/auth/signup", json={"name": "Alice", "email": "alice@example.com"}).json()
        headers = {"Authorization": f"Bearer {body['access_token']}"}
        first.post("/chat/send", headers=headers, json={"text": "hello", "await_reply": True})
        alice_id = body["user"]["id"]

    # 재시작: 같은 DB에서 스냅샷을 다시 로드
    with TestClient(app) as restarted:
        login = restarted.post("/auth/login", json={"email": "alice@example.com"})
        assert login.status_code == 200
        headers = {"Authorization": f"Bearer {login.json()['access_token']}"}
        history = restarted.get(f"/chat/history/{alice_id}", headers=headers).json()
        assert [m["text"] for m in history["history"]] == ["hello", "Stay hydrated."]
