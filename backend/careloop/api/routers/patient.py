from fastapi import APIRouter, Depends, HTTPException

from careloop.config import GLP_MEDICATIONS, ONBOARDING_FORM_DEFAULTS
from careloop.schemas import User, Role, PatientProfile, PatientRecord, OnboardingOptions
from careloop.services.auth_service import get_controller, require_role
from careloop.services.care_loop import (
    CareLoopController, PatientRecordNotFound, OnboardingAlreadyComplete,
)

router = APIRouter(prefix="/patient", tags=["patient"])

patient_only = require_role(Role.PATIENT)


@router.get("/onboarding/options", response_model=OnboardingOptions)
async def onboarding_options():
    return OnboardingOptions(
        medications=GLP_MEDICATIONS,
        defaults=PatientProfile(**ONBOARDING_FORM_DEFAULTS),
    )


@router.post("/onboarding", response_model=PatientRecord)
async def complete_onboarding(
    profile: PatientProfile,
    current_user: User = Depends(patient_only),
    controller: CareLoopController = Depends(get_controller),
):
    try:
        return await controller.complete_onboarding(current_user.id, profile)
    except PatientRecordNotFound:
        raise HTTPException(status_code=404, detail="Patient record not found")
    except OnboardingAlreadyComplete:
        raise HTTPException(status_code=409, detail="Onboarding already completed")


@router.get("/record", response_model=PatientRecord)
async def get_my_record(
    current_user: User = Depends(patient_only),
    controller: CareLoopController = Depends(get_controller),
):
    record = controller.get_record(current_user.id)
    if record is None:
        raise HTTPException(status_code=404, detail="Patient record not found")
    return record


@router.post("/sos", response_model=PatientRecord)
async def trigger_sos(
    current_user: User = Depends(patient_only),
    controller: CareLoopController = Depends(get_controller),
):
    """SOS 활성화. 이후 AI 답변이 중단되고 의료진 우선 채널로 넘어갑니다."""
    record = await controller.trigger_sos(current_user)
    if record is None:
        raise HTTPException(status_code=404, detail="Patient record not found")
    return record
