from __future__ import annotations
from fastapi import APIRouter, Depends, HTTPException, status

from careloop.schemas import User, Role, ChatSendReq, ChatSendResp, ChatHistoryResp
from careloop.services.auth_service import get_controller, get_current_user
from careloop.services.care_loop import CareLoopController

router = APIRouter(prefix="/chat", tags=["chat"])


def check_conversation_access(current_user: User, patient_id: str, controller: CareLoopController):
    """환자는 본인 대화만, 의료진은 자기 케이스로드만, 관리자는 전체"""
    if current_user.role == Role.ADMIN:
        return
    if current_user.role == Role.PATIENT:
        if patient_id != current_user.id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your conversation")
        return
    if not any(p.user_id == patient_id for p in controller.caseload(current_user)):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Patient is not in your caseload")


@router.post("/send", response_model=ChatSendResp)
async def chat_send(
    req: ChatSendReq,
    current_user: User = Depends(get_current_user),
    controller: CareLoopController = Depends(get_controller),
):
    target_id = current_user.id if current_user.role == Role.PATIENT else req.patient_id
    # 대상 기록이 없으면 권한 검사 전에 "대화 미선택"으로 처리
    if target_id and controller.get_record(target_id) is not None:
        check_conversation_access(current_user, target_id, controller)

    resp = await controller.post_message(
        current_user, req.text, req.patient_id, await_reply=req.await_reply
    )
    # 대상이 없거나 빈 메시지는 컨트롤러에서 무시됨
    if resp is None:
        raise HTTPException(status_code=400, detail="No conversation selected")
    return resp


@router.get("/history/{patient_id}", response_model=ChatHistoryResp)
async def get_chat_history(
    patient_id: str,
    current_user: User = Depends(get_current_user),
    controller: CareLoopController = Depends(get_controller),
):
    check_conversation_access(current_user, patient_id, controller)
    record = controller.get_record(patient_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Patient record not found")
    return ChatHistoryResp(patient_id=patient_id, sos_active=record.sos_active, history=record.messages)
