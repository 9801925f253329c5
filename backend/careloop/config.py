# backend/careloop/config.py
DEFAULT_SYSTEM_INSTRUCTION = """
You are an AI Care Assistant specializing in GLP-1 therapy.
Your goal is to provide daily guidance, reassurance, and symptom tracking.
Rules:
1. Always be empathetic but clinical.
2. If the user reports severe symptoms (extreme vomiting, fainting, sharp abdominal pain), immediately advise them to press the SOS button.
3. Keep responses concise and practical.
4. Mention that "Your care team is monitoring this chat."
5. Never provide medical prescriptions.
"""

# 온보딩 폼에서 선택 가능한 약물 목록
GLP_MEDICATIONS = [
    "Ozempic (Semaglutide)",
    "Wegovy (Semaglutide)",
    "Mounjaro (Tirzepatide)",
    "Zepbound (Tirzepatide)",
    "Saxenda (Liraglutide)",
    "Trulicity (Dulaglutide)",
]

# 온보딩 폼 초기값 (가입 시점의 빈 프로필과는 다름)
ONBOARDING_FORM_DEFAULTS = {
    "age": 30,
    "gender": "Other",
    "height": 170,
    "weight": 85,
    "medication": GLP_MEDICATIONS[0],
    "dosage": "0.25mg",
    "conditions": [],
}

# AI 응답 실패 시 대체 문구
AI_OFFLINE_FALLBACK = (
    "The AI assistant is currently offline (Missing API Key). "
    "Please use the SOS button for urgent clinical matters."
)
AI_EMPTY_FALLBACK = "Connection error. Please use SOS if urgent."
AI_ERROR_FALLBACK = (
    "The AI assistant is experiencing high traffic. "
    "Your clinical team has been notified of your activity."
)

AI_SENDER_ID = "ai"
AI_SENDER_NAME = "Assistant"
