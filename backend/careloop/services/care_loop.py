from __future__ import annotations
import asyncio
import itertools
import logging
import os
import secrets
import string
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Set, Tuple

from careloop import kafka
from careloop.config import AI_ERROR_FALLBACK, AI_SENDER_ID, AI_SENDER_NAME
from careloop.schemas import (
    CareLoopState, User, Role, SenderRole, PatientProfile, PatientRecord, Message, AppConfig,
    AdminOverview, AdminPatientRow, CaseloadEntry, ChatSendResp,
    AuthView, OnboardingView, PatientChatView, ProviderCaseloadView, AdminConsoleView,
)
from careloop.services.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)

AI_REPLY_TIMEOUT = float(os.getenv("AI_REPLY_TIMEOUT_S", "30"))

# (prompt, history, profile, system_instruction) -> 답변 문자열
Responder = Callable[[str, List[Message], PatientProfile, str], Awaitable[str]]
# (event_type, key, payload)
Notifier = Callable[[str, str, dict], Awaitable[None]]

_ID_ALPHABET = string.ascii_lowercase + string.digits
_message_seq = itertools.count()


class CareLoopError(Exception):
    pass


class UserNotFound(CareLoopError):
    pass


class EmailAlreadyRegistered(CareLoopError):
    pass


class PatientRecordNotFound(CareLoopError):
    pass


class OnboardingAlreadyComplete(CareLoopError):
    pass


class InvalidAssignment(CareLoopError):
    pass


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_message_id(prefix: str = "") -> str:
    # 생성 시각 기준 + 같은 나노초 충돌 방지용 순번
    return f"{prefix}{time.time_ns()}{next(_message_seq) % 1000:03d}"


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _find_record(state: CareLoopState, patient_id: str) -> Optional[PatientRecord]:
    return next((p for p in state.patients if p.user_id == patient_id), None)


def append_message(state: CareLoopState, patient_id: str, message: Message) -> bool:
    """현재 state에서 patient_id로 기록을 찾아 메시지를 덧붙인다. 기록이 없으면 False."""
    record = _find_record(state, patient_id)
    if record is None:
        return False
    record.messages.append(message)
    return True


class CareLoopController:
    """
    users / patients / config 세 스토어의 유일한 writer.
    라우터는 여기 메서드로만 상태를 바꾸고, 바뀐 스토어는 즉시 스냅샷으로 저장된다.
    """

    def __init__(
        self,
        state: CareLoopState,
        store: SnapshotStore,
        *,
        responder: Responder,
        notify: Notifier = kafka.publish_event,
        ai_timeout: float = AI_REPLY_TIMEOUT,
    ):
        self._state = state
        self._store = store
        self._responder = responder
        self._notify = notify
        self._ai_timeout = ai_timeout
        self._persist_lock = asyncio.Lock()
        self._pending: Set[asyncio.Task] = set()

    @classmethod
    async def load(cls, store: SnapshotStore, **kwargs) -> "CareLoopController":
        state = await store.load()
        return cls(state, store, **kwargs)

    # --- 조회 (복사본 반환) ---

    @property
    def state(self) -> CareLoopState:
        return self._state.model_copy(deep=True)

    def get_user(self, user_id: str) -> Optional[User]:
        user = next((u for u in self._state.users if u.id == user_id), None)
        return user.model_copy(deep=True) if user else None

    def get_record(self, patient_id: str) -> Optional[PatientRecord]:
        record = _find_record(self._state, patient_id)
        return record.model_copy(deep=True) if record else None

    def get_config(self) -> AppConfig:
        return self._state.config.model_copy()

    def users_with_role(self, role: Role) -> List[User]:
        return [u.model_copy() for u in self._state.users if u.role == role]

    # --- 저장 ---

    async def _persist(self, *keys: str) -> None:
        # 락 안에서 직렬화해야 늦게 저장하는 쪽이 항상 최신 상태를 쓴다
        savers = {
            "users": self._store.save_users,
            "patients": self._store.save_patients,
            "config": self._store.save_config,
        }
        async with self._persist_lock:
            for key in keys:
                await savers[key](self._state)

    async def _persist_or_undo(self, undo: Callable[[], None], *keys: str) -> None:
        # 저장 실패 시 메모리 변경도 되돌려서 재시도가 중복을 만들지 않게 한다
        try:
            await self._persist(*keys)
        except Exception:
            undo()
            logger.exception("[care_loop] saving %s failed, change rolled back", ", ".join(keys))
            raise

    # --- 인증 ---

    def _new_user_id(self) -> str:
        existing = {u.id for u in self._state.users}
        while True:
            candidate = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
            if candidate not in existing and candidate != AI_SENDER_ID:
                return candidate

    def _find_user_by_email(self, email: str) -> Optional[User]:
        target = _normalize_email(email)
        return next((u for u in self._state.users if _normalize_email(u.email) == target), None)

    async def sign_up(self, name: str, email: str, role: Role) -> User:
        if self._find_user_by_email(email):
            raise EmailAlreadyRegistered(email)

        user = User(id=self._new_user_id(), name=name.strip(), email=email.strip(), role=role)
        self._state.users.append(user)
        keys = ["users"]
        if role == Role.PATIENT:
            self._state.patients.append(PatientRecord(user_id=user.id))
            keys.append("patients")

        def undo():
            self._state.users = [u for u in self._state.users if u.id != user.id]
            self._state.patients = [p for p in self._state.patients if p.user_id != user.id]

        await self._persist_or_undo(undo, *keys)

        logger.info("[care_loop] signed up %s as %s", user.id, role.value)
        return user.model_copy()

    def log_in(self, email: str) -> User:
        user = self._find_user_by_email(email)
        if user is None:
            raise UserNotFound(email)
        return user.model_copy()

    # --- 온보딩 ---

    async def complete_onboarding(self, patient_user_id: str, profile: PatientProfile) -> PatientRecord:
        record = _find_record(self._state, patient_user_id)
        if record is None:
            raise PatientRecordNotFound(patient_user_id)
        if record.onboarded:
            raise OnboardingAlreadyComplete(patient_user_id)

        previous = record.profile

        def undo():
            record.profile = previous
            record.onboarded = False

        record.profile = profile.model_copy(deep=True)
        record.onboarded = True
        await self._persist_or_undo(undo, "patients")
        return record.model_copy(deep=True)

    # --- 메시지 ---

    async def send_message(
        self, sender: User, text: str, target_patient_id: Optional[str] = None
    ) -> Optional[Message]:
        """
        메시지를 대상 환자 기록에 추가한다.
        대상이 정해지지 않으면 아무것도 하지 않고 None.
        환자가 보냈고 SOS가 꺼져 있으면 AI 답변을 백그라운드 태스크로 요청한다.
        """
        message, _ = await self._send(sender, text, target_patient_id)
        return message

    async def send_message_and_wait(
        self, sender: User, text: str, target_patient_id: Optional[str] = None
    ) -> Tuple[Optional[Message], Optional[Message]]:
        """send_message와 같지만 AI 답변이 붙을 때까지 기다려서 (메시지, 답변)을 반환"""
        message, task = await self._send(sender, text, target_patient_id)
        reply = await task if task is not None else None
        return message, reply

    async def post_message(
        self,
        sender: User,
        text: str,
        target_patient_id: Optional[str] = None,
        *,
        await_reply: bool = False,
    ) -> Optional[ChatSendResp]:
        # /chat/send 응답용: AI 요청 여부는 실제로 태스크가 생겼는지로 판단
        message, task = await self._send(sender, text, target_patient_id)
        if message is None:
            return None
        assistant = await task if (await_reply and task is not None) else None
        return ChatSendResp(message=message, ai_dispatched=task is not None, assistant=assistant)

    async def _send(
        self, sender: User, text: str, target_patient_id: Optional[str]
    ) -> Tuple[Optional[Message], Optional[asyncio.Task]]:
        target_id = sender.id if sender.role == Role.PATIENT else target_patient_id
        if not target_id or not text.strip():
            return None, None
        record = _find_record(self._state, target_id)
        if record is None:
            return None, None

        message = Message(
            id=_new_message_id(),
            sender_id=sender.id,
            sender_name=sender.name,
            sender_role=SenderRole(sender.role.value),
            text=text,
            timestamp=_now_iso(),
            status="sos" if record.sos_active else "normal",
        )
        record.messages.append(message)
        dispatch_ai = sender.role == Role.PATIENT and not record.sos_active
        history = [m.model_copy() for m in record.messages]
        profile = record.profile.model_copy(deep=True)
        instruction = self._state.config.ai_system_instruction

        def undo():
            record.messages[:] = [m for m in record.messages if m.id != message.id]

        # 저장이 성공한 뒤에만 AI 요청
        await self._persist_or_undo(undo, "patients")

        task = None
        if dispatch_ai:
            task = asyncio.create_task(self._dispatch_ai(target_id, text, history, profile, instruction))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        return message.model_copy(), task

    async def _dispatch_ai(
        self,
        patient_id: str,
        prompt: str,
        history: List[Message],
        profile: PatientProfile,
        system_instruction: str,
    ) -> Optional[Message]:
        try:
            reply = await asyncio.wait_for(
                self._responder(prompt, history, profile, system_instruction),
                timeout=self._ai_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("[care_loop] AI reply for %s timed out after %.1fs", patient_id, self._ai_timeout)
            reply = AI_ERROR_FALLBACK
        except Exception as e:
            logger.exception("[care_loop] AI responder failed for %s: %s", patient_id, e)
            reply = AI_ERROR_FALLBACK

        ai_message = Message(
            id=_new_message_id("ai-"),
            sender_id=AI_SENDER_ID,
            sender_name=AI_SENDER_NAME,
            sender_role=SenderRole.AI,
            text=reply,
            timestamp=_now_iso(),
        )
        # 요청 당시 참조가 아니라 지금 state에서 다시 찾아서 추가
        if not append_message(self._state, patient_id, ai_message):
            logger.warning("[care_loop] patient record %s vanished before AI reply", patient_id)
            return None
        try:
            await self._persist("patients")
        except Exception as e:
            # 답변은 메모리에 남고 다음 patients 저장 때 함께 기록된다
            logger.exception("[care_loop] saving AI reply for %s failed: %s", patient_id, e)
        return ai_message.model_copy()

    async def drain(self) -> None:
        """진행 중인 AI 태스크가 모두 끝날 때까지 대기"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # --- SOS ---

    async def trigger_sos(self, patient_user: User) -> Optional[PatientRecord]:
        if patient_user.role != Role.PATIENT:
            return None
        record = _find_record(self._state, patient_user.id)
        if record is None:
            return None
        if record.sos_active:
            return record.model_copy(deep=True)

        def undo():
            record.sos_active = False

        record.sos_active = True
        await self._persist_or_undo(undo, "patients")
        logger.warning("[care_loop] SOS triggered by patient %s", patient_user.id)

        user = next((u for u in self._state.users if u.id == patient_user.id), patient_user)
        await self._notify("sos.triggered", user.id, {
            "patient_id": user.id,
            "patient_name": user.name,
            "assigned_doctor_id": user.assigned_doctor_id,
            "assigned_coach_id": user.assigned_coach_id,
            "triggered_at": _now_iso(),
        })
        return record.model_copy(deep=True)

    # --- 케어팀 배정 ---

    def _check_assignee(self, user_id: str, role: Role) -> None:
        user = next((u for u in self._state.users if u.id == user_id), None)
        if user is None or user.role != role:
            raise InvalidAssignment(f"{user_id} is not a {role.value}")

    async def assign(self, patient_id: str, doctor_id: str, coach_id: str) -> User:
        patient = next((u for u in self._state.users if u.id == patient_id), None)
        if patient is None or patient.role != Role.PATIENT:
            raise InvalidAssignment(f"{patient_id} is not a PATIENT")
        if doctor_id:
            self._check_assignee(doctor_id, Role.DOCTOR)
        if coach_id:
            self._check_assignee(coach_id, Role.FITNESS_COACH)

        previous = (patient.assigned_doctor_id, patient.assigned_coach_id)

        def undo():
            patient.assigned_doctor_id, patient.assigned_coach_id = previous

        patient.assigned_doctor_id = doctor_id or None
        patient.assigned_coach_id = coach_id or None
        await self._persist_or_undo(undo, "users")
        logger.info("[care_loop] care team for %s: doctor=%s coach=%s", patient_id, doctor_id, coach_id)

        await self._notify("care_team.assigned", patient_id, {
            "patient_id": patient_id,
            "assigned_doctor_id": patient.assigned_doctor_id,
            "assigned_coach_id": patient.assigned_coach_id,
        })
        return patient.model_copy()

    # --- AI 설정 ---

    async def update_ai_instruction(self, new_instruction: str) -> AppConfig:
        previous = self._state.config

        def undo():
            self._state.config = previous

        self._state.config = AppConfig(ai_system_instruction=new_instruction)
        await self._persist_or_undo(undo, "config")
        logger.info("[care_loop] AI system instruction updated (%d chars)", len(new_instruction))
        return self._state.config.model_copy()

    # --- 케이스로드 / 관리자 화면 ---

    def caseload(self, provider: User) -> List[PatientRecord]:
        if provider.role == Role.DOCTOR:
            assigned = {u.id for u in self._state.users if u.assigned_doctor_id == provider.id}
        elif provider.role == Role.FITNESS_COACH:
            assigned = {u.id for u in self._state.users if u.assigned_coach_id == provider.id}
        else:
            return []
        return [p.model_copy(deep=True) for p in self._state.patients if p.user_id in assigned]

    def caseload_entries(self, provider: User) -> List[CaseloadEntry]:
        names = {u.id: u.name for u in self._state.users}
        return [
            CaseloadEntry(
                patient_id=p.user_id,
                patient_name=names.get(p.user_id, "Unknown Patient"),
                medication=p.profile.medication,
                sos_active=p.sos_active,
                last_message=p.messages[-1].text if p.messages else None,
            )
            for p in self.caseload(provider)
        ]

    def admin_overview(self) -> AdminOverview:
        users = {u.id: u for u in self._state.users}
        rows = []
        for p in self._state.patients:
            user = users.get(p.user_id)
            if user is None:
                continue
            rows.append(AdminPatientRow(
                patient_id=p.user_id,
                name=user.name,
                medication=p.profile.medication if p.onboarded else "In Onboarding",
                status="SOS ACTIVE" if p.sos_active else "STABLE",
                assigned_doctor_id=user.assigned_doctor_id,
                assigned_coach_id=user.assigned_coach_id,
            ))
        return AdminOverview(
            patients=rows,
            doctors=self.users_with_role(Role.DOCTOR),
            coaches=self.users_with_role(Role.FITNESS_COACH),
        )

    # --- 화면 분기 ---

    def resolve_view(self, user: Optional[User], selected_patient_id: Optional[str] = None):
        if user is None:
            return AuthView()
        builders = {
            Role.PATIENT: self._patient_view,
            Role.DOCTOR: self._provider_view,
            Role.FITNESS_COACH: self._provider_view,
            Role.ADMIN: self._admin_view,
        }
        return builders[user.role](user, selected_patient_id)

    def _patient_view(self, user: User, _selected: Optional[str]):
        record = self.get_record(user.id)
        if record is None or not record.onboarded:
            return OnboardingView(user=user)
        return PatientChatView(user=user, record=record)

    def _provider_view(self, user: User, selected: Optional[str]):
        caseload = self.caseload(user)
        active = next((p for p in caseload if p.user_id == selected), None)
        if active is None and caseload:
            active = caseload[0]
        return ProviderCaseloadView(user=user, caseload=caseload, active_patient=active)

    def _admin_view(self, user: User, _selected: Optional[str]):
        state = self.state
        return AdminConsoleView(
            user=user,
            users=state.users,
            patients=state.patients,
            doctors=[u for u in state.users if u.role == Role.DOCTOR],
            coaches=[u for u in state.users if u.role == Role.FITNESS_COACH],
            config=state.config,
        )
