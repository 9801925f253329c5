from fastapi import APIRouter, Depends, HTTPException

from careloop.schemas import User, Role, AssignReq, AdminOverview, AppConfig, AIInstructionUpdate
from careloop.services.auth_service import get_controller, require_role
from careloop.services.care_loop import CareLoopController, InvalidAssignment

router = APIRouter(prefix="/admin", tags=["admin"])

admin_only = require_role(Role.ADMIN)


@router.get("/overview", response_model=AdminOverview)
async def get_overview(
    _: User = Depends(admin_only),
    controller: CareLoopController = Depends(get_controller),
):
    return controller.admin_overview()


@router.post("/assign", response_model=User)
async def assign_care_team(
    req: AssignReq,
    _: User = Depends(admin_only),
    controller: CareLoopController = Depends(get_controller),
):
    try:
        return await controller.assign(req.patient_id, req.doctor_id, req.coach_id)
    except InvalidAssignment as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/ai-instruction", response_model=AppConfig)
async def get_ai_instruction(
    _: User = Depends(admin_only),
    controller: CareLoopController = Depends(get_controller),
):
    return controller.get_config()


@router.put("/ai-instruction", response_model=AppConfig)
async def update_ai_instruction(
    req: AIInstructionUpdate,
    _: User = Depends(admin_only),
    controller: CareLoopController = Depends(get_controller),
):
    """다음 AI 호출부터 바로 적용됩니다."""
    return await controller.update_ai_instruction(req.ai_system_instruction)
