from typing import List
from fastapi import APIRouter, Depends

from careloop.schemas import User, Role, CaseloadEntry
from careloop.services.auth_service import get_controller, require_role
from careloop.services.care_loop import CareLoopController

router = APIRouter(prefix="/caseload", tags=["caseload"])


@router.get("", response_model=List[CaseloadEntry])
async def get_my_caseload(
    current_user: User = Depends(require_role(Role.DOCTOR, Role.FITNESS_COACH)),
    controller: CareLoopController = Depends(get_controller),
):
    """
    담당 환자 목록. 의사는 assigned_doctor_id, 코치는 assigned_coach_id 기준.
    """
    return controller.caseload_entries(current_user)
