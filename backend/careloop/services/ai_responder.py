from __future__ import annotations
import os, asyncio, logging
from typing import List, Dict
from openai import OpenAI, APIConnectionError, RateLimitError, OpenAIError

from careloop.config import AI_OFFLINE_FALLBACK, AI_EMPTY_FALLBACK, AI_ERROR_FALLBACK
from careloop.schemas import Message, PatientProfile, SenderRole

MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
TIMEOUT = float(os.getenv("OPENAI_TIMEOUT_S", "15"))
TEMPERATURE = 0.7
HISTORY_WINDOW = 10

logger = logging.getLogger(__name__)

_client: OpenAI | None = None


def _get_client() -> OpenAI | None:
    # 환경변수가 늦게 로딩될 수 있어서 import 시점이 아니라 호출 시점에 생성
    global _client
    if not os.getenv("OPENAI_API_KEY"):
        logger.error("[ai_responder] OPENAI_API_KEY is missing. Set it in the environment.")
        return None
    if _client is None:
        _client = OpenAI()
    return _client


def build_context(history: List[Message], profile: PatientProfile) -> str:
    """환자 프로필 + 최근 대화(최대 10개)를 모델 입력용 텍스트로 정리"""
    formatted_history = "\n".join(
        f"{'Assistant' if m.sender_role == SenderRole.AI else 'User'}: {m.text}"
        for m in history[-HISTORY_WINDOW:]
    )
    return (
        "Patient Profile:\n"
        f"Age: {profile.age}\n"
        f"Current Med: {profile.medication} ({profile.dosage})\n"
        f"Weight: {profile.weight}kg\n"
        "\n"
        "Conversation History:\n"
        f"{formatted_history}"
    )


def _messages_for_openai(system_instruction: str, prompt: str, context: str) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": system_instruction},
        {"role": "user", "content": f"{context}\n\nPatient Query: {prompt}"},
    ]


async def get_ai_response(
    prompt: str,
    history: List[Message],
    profile: PatientProfile,
    system_instruction: str,
) -> str:
    """
    환자 메시지에 대한 AI 답변을 반환한다.
    어떤 실패(키 없음, 네트워크, 쿼터)도 예외로 올리지 않고 대체 문구로 바꾼다.
    """
    client = _get_client()
    if client is None:
        return AI_OFFLINE_FALLBACK

    messages = _messages_for_openai(system_instruction, prompt, build_context(history, profile))

    try:
        def _call():
            return client.chat.completions.create(
                model=MODEL,
                messages=messages,
                temperature=TEMPERATURE,
                timeout=TIMEOUT,
            )
        resp = await asyncio.to_thread(_call)
        if not resp.choices:
            return AI_EMPTY_FALLBACK
        text = resp.choices[0].message.content
        if not text or not text.strip():
            return AI_EMPTY_FALLBACK
        return text.strip()

    except (RateLimitError, APIConnectionError, OpenAIError) as e:
        logger.exception("[ai_responder] OpenAI error (falling back): %s", e)
        return AI_ERROR_FALLBACK
    except Exception as e:
        logger.exception("[ai_responder] unexpected failure (falling back): %s", e)
        return AI_ERROR_FALLBACK
