from typing import Optional
from fastapi import APIRouter, Depends, Query

from careloop.schemas import User, View
from careloop.services.auth_service import get_controller, get_optional_user
from careloop.services.care_loop import CareLoopController

router = APIRouter(prefix="/view", tags=["view"])


@router.get("", response_model=View)
async def resolve_view(
    selected_patient_id: Optional[str] = Query(None),
    current_user: Optional[User] = Depends(get_optional_user),
    controller: CareLoopController = Depends(get_controller),
):
    """
    현재 사용자에게 보여줄 화면을 결정합니다.
    토큰이 없으면 auth, 환자는 onboarding / patient_chat,
    의료진은 provider_caseload, 관리자는 admin_console.
    """
    return controller.resolve_view(current_user, selected_patient_id)
