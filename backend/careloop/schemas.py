from __future__ import annotations
from typing import Optional, List, Literal, Union, Annotated
from pydantic import BaseModel, Field, EmailStr
from enum import Enum

from careloop.config import DEFAULT_SYSTEM_INSTRUCTION


class Role(str, Enum):
    PATIENT = "PATIENT"
    DOCTOR = "DOCTOR"
    FITNESS_COACH = "FITNESS_COACH"
    ADMIN = "ADMIN"


class SenderRole(str, Enum):
    """메시지 작성자 역할 (사용자 역할 + AI)"""
    PATIENT = "PATIENT"
    DOCTOR = "DOCTOR"
    FITNESS_COACH = "FITNESS_COACH"
    ADMIN = "ADMIN"
    AI = "AI"


MessageStatus = Literal["normal", "sos", "overridden"]

# --- 도메인 엔티티 (스냅샷으로 그대로 저장됨) ---

class User(BaseModel):
    id: str
    name: str
    email: str
    role: Role
    assigned_doctor_id: Optional[str] = None
    assigned_coach_id: Optional[str] = None


class PatientProfile(BaseModel):
    age: int = 0
    gender: str = ""
    height: float = 0
    weight: float = 0
    medication: str = ""
    dosage: str = ""
    conditions: List[str] = Field(default_factory=list)


class Message(BaseModel):
    id: str
    sender_id: str
    sender_name: str
    sender_role: SenderRole
    text: str
    timestamp: str
    status: MessageStatus = "normal"


class PatientRecord(BaseModel):
    user_id: str
    profile: PatientProfile = Field(default_factory=PatientProfile)
    messages: List[Message] = Field(default_factory=list)
    sos_active: bool = False
    onboarded: bool = False


class AppConfig(BaseModel):
    ai_system_instruction: str = DEFAULT_SYSTEM_INSTRUCTION


class CareLoopState(BaseModel):
    """컨트롤러가 단독으로 소유하는 세 개의 스토어"""
    users: List[User] = Field(default_factory=list)
    patients: List[PatientRecord] = Field(default_factory=list)
    config: AppConfig = Field(default_factory=AppConfig)

# --- 인증 ---

class SignupReq(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    role: Role = Role.PATIENT


class LoginReq(BaseModel):
    email: EmailStr


class Token(BaseModel):
    """
    /auth/signup, /auth/login 응답 스키마.
    프론트엔드는 이후 요청에 Bearer 토큰으로 전달합니다.
    """
    access_token: str
    token_type: str = "bearer"
    user: User

# --- 환자 ---

class OnboardingOptions(BaseModel):
    medications: List[str]
    defaults: PatientProfile

# --- 채팅 ---

class ChatSendReq(BaseModel):
    text: str
    # 의료진은 대화할 환자를 지정해야 함 (환자 본인은 생략)
    patient_id: Optional[str] = None
    # True면 AI 답변까지 기다렸다가 함께 반환
    await_reply: bool = False


class ChatSendResp(BaseModel):
    message: Message
    ai_dispatched: bool = False
    assistant: Optional[Message] = None


class ChatHistoryResp(BaseModel):
    patient_id: str
    sos_active: bool
    history: List[Message]

# --- 의료진 케이스로드 ---

class CaseloadEntry(BaseModel):
    patient_id: str
    patient_name: str
    medication: str
    sos_active: bool
    last_message: Optional[str] = None

# --- 관리자 ---

class AssignReq(BaseModel):
    patient_id: str
    # 빈 문자열이면 배정 해제
    doctor_id: str = ""
    coach_id: str = ""


class AdminPatientRow(BaseModel):
    patient_id: str
    name: str
    medication: str
    status: Literal["SOS ACTIVE", "STABLE"]
    assigned_doctor_id: Optional[str] = None
    assigned_coach_id: Optional[str] = None


class AdminOverview(BaseModel):
    patients: List[AdminPatientRow]
    doctors: List[User]
    coaches: List[User]


class AIInstructionUpdate(BaseModel):
    ai_system_instruction: str = Field(..., min_length=1)

# --- 화면 분기 (역할별 tagged union) ---

class AuthView(BaseModel):
    kind: Literal["auth"] = "auth"


class OnboardingView(BaseModel):
    kind: Literal["onboarding"] = "onboarding"
    user: User


class PatientChatView(BaseModel):
    kind: Literal["patient_chat"] = "patient_chat"
    user: User
    record: PatientRecord


class ProviderCaseloadView(BaseModel):
    kind: Literal["provider_caseload"] = "provider_caseload"
    user: User
    caseload: List[PatientRecord]
    active_patient: Optional[PatientRecord] = None


class AdminConsoleView(BaseModel):
    kind: Literal["admin_console"] = "admin_console"
    user: User
    users: List[User]
    patients: List[PatientRecord]
    doctors: List[User]
    coaches: List[User]
    config: AppConfig


View = Annotated[
    Union[AuthView, OnboardingView, PatientChatView, ProviderCaseloadView, AdminConsoleView],
    Field(discriminator="kind"),
]
