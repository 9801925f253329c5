import os
from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from careloop.schemas import User, Role
from careloop.services.care_loop import CareLoopController

# 비밀번호 없는 이메일 조회 방식이라 토큰은 "현재 세션 사용자"만 나타낸다
SECRET_KEY = os.getenv("SECRET_KEY", "careloop-dev-secret")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24)))

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def get_controller(request: Request) -> CareLoopController:
    return request.app.state.controller


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def token_for(user: User) -> str:
    return create_access_token(data={"sub": user.id, "role": user.role.value})


def _user_from_token(token: str, controller: CareLoopController) -> Optional[User]:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    user_id = payload.get("sub")
    if not user_id:
        return None
    return controller.get_user(user_id)


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    controller: CareLoopController = Depends(get_controller),
) -> User:
    """
    Bearer 토큰을 검증하고 현재 사용자를 컨트롤러에서 찾아 반환하는 의존성.
    """
    user = _user_from_token(token, controller)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_optional_user(
    token: Optional[str] = Depends(optional_oauth2_scheme),
    controller: CareLoopController = Depends(get_controller),
) -> Optional[User]:
    if not token:
        return None
    return _user_from_token(token, controller)


def require_role(*roles: Role):
    async def _check(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed for this role")
        return current_user
    return _check
