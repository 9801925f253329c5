from __future__ import annotations

import asyncio
from typing import Any, Callable

import pytest
from fastapi.testclient import TestClient

from careloop.schemas import Role
from careloop.services import ai_responder
from careloop.services.care_loop import CareLoopController
from careloop.services.snapshot_store import SnapshotStore


class FakeResponder:
    """AI 응답기 대역: 고정 문구를 돌려주고 호출 인자를 기록"""

    def __init__(self, reply: str = "Stay hydrated."):
        self.reply = reply
        self.calls: list[dict[str, Any]] = []

    async def __call__(self, prompt, history, profile, system_instruction):
        self.calls.append({
            "prompt": prompt,
            "history": list(history),
            "profile": profile,
            "system_instruction": system_instruction,
        })
        return self.reply


class RecordingNotifier:
    def __init__(self):
        self.events: list[tuple[str, str, dict]] = []

    async def __call__(self, event_type, key, payload):
        self.events.append((event_type, key, payload))


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'careloop-test.sqlite'}"


@pytest.fixture
def responder() -> FakeResponder:
    return FakeResponder()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def run_loop(db_url, responder, notifier) -> Callable:
    """
    시나리오 코루틴을 새 이벤트 루프에서 실행한다.
    매번 같은 sqlite 파일에서 스냅샷을 다시 로드하므로 재시작 상황도 재현 가능.
    """
    def _run(scenario, **kwargs):
        async def _main():
            store = SnapshotStore.from_url(db_url)
            await store.init()
            kwargs.setdefault("responder", responder)
            kwargs.setdefault("notify", notifier)
            controller = await CareLoopController.load(store, **kwargs)
            try:
                return await scenario(controller)
            finally:
                await controller.drain()
                await store.dispose()

        return asyncio.run(_main())

    return _run


@pytest.fixture
def client(db_url, responder, monkeypatch):
    monkeypatch.setenv("ASYNC_DATABASE_URL", db_url)
    monkeypatch.delenv("KAFKA_BOOTSTRAP", raising=False)
    monkeypatch.setattr(ai_responder, "get_ai_response", responder)

    from careloop.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def signup(client) -> Callable[..., dict]:
    """가입 후 {"user": ..., "headers": ...} 반환"""
    def _signup(name: str, email: str, role: Role = Role.PATIENT) -> dict:
        resp = client.post("/auth/signup", json={"name": name, "email": email, "role": role.value})
        assert resp.status_code == 201, resp.text
        body = resp.json()
        return {
            "user": body["user"],
            "headers": {"Authorization": f"Bearer {body['access_token']}"},
        }

    return _signup
