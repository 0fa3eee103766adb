from fastapi import HTTPException, Depends, Request, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from typing import Optional
import jwt
from core.config import Settings
from utils.jwt import decode_session_token

# Models
class SessionUser(BaseModel):
    email: str
    expires_at: Optional[int] = None

# Security
security = HTTPBearer(auto_error=False)

def get_settings(request: Request) -> Settings:
    return request.app.state.settings

# PIN 검증 후 발급된 세션 토큰 확인
async def require_pin_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
    settings: Settings = Depends(get_settings),
) -> SessionUser:
    credentials_exception = HTTPException(
        status_code=401,
        detail="PIN verification required",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None or not settings.session_secret:
        raise credentials_exception
    try:
        payload = decode_session_token(credentials.credentials, settings.session_secret)
    except jwt.PyJWTError:
        raise credentials_exception
    email = payload.get("sub")
    if not email:
        raise credentials_exception
    return SessionUser(email=email, expires_at=payload.get("exp"))

# 에러 로그용: 유효한 세션이면 이메일, 아니면 None
def session_actor(request: Request) -> Optional[str]:
    settings = get_settings(request)
    header = request.headers.get("authorization", "")
    if not header.lower().startswith("bearer ") or not settings.session_secret:
        return None
    try:
        return decode_session_token(header[7:], settings.session_secret).get("sub")
    except jwt.PyJWTError:
        return None
