from fastapi import APIRouter, Depends, HTTPException, status

from careloop.schemas import SignupReq, LoginReq, Token, User
from careloop.services.auth_service import get_controller, get_current_user, token_for
from careloop.services.care_loop import CareLoopController, EmailAlreadyRegistered, UserNotFound

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/signup", response_model=Token, status_code=status.HTTP_201_CREATED)
async def sign_up(req: SignupReq, controller: CareLoopController = Depends(get_controller)):
    try:
        user = await controller.sign_up(req.name, req.email, req.role)
    except EmailAlreadyRegistered:
        raise HTTPException(status_code=400, detail="Email already registered.")
    return Token(access_token=token_for(user), user=user)


@router.post("/login", response_model=Token)
async def log_in(req: LoginReq, controller: CareLoopController = Depends(get_controller)):
    try:
        user = controller.log_in(req.email)
    except UserNotFound:
        raise HTTPException(status_code=404, detail="User not found")
    return Token(access_token=token_for(user), user=user)


@router.get("/me", response_model=User)
async def get_my_info(current_user: User = Depends(get_current_user)):
    """현재 토큰의 사용자 정보"""
    return current_user
