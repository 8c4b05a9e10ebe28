# app/core/security.py
# 負責 JWT 權杖的驗證
# (登入 / 註冊由外部認證服務處理，這裡只驗證它簽發的 Token)
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, Query, status, WebSocket, WebSocketDisconnect
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.config import settings
from app.core.database import get_db
from app.schemas.user_schema import TokenData
from app.repositories.user_repo import UserRepository
from app.models.user import User

# 定義 Token 從哪裡來 (Authorization Header)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")

def verify_access_token(token: str) -> TokenData | None:
    """
    驗證 JWT，回傳 TokenData (Pydantic Model) 或 None
    """
    try:
        payload = jwt.decode(
            token, 
            settings.JWT_SECRET_KEY, 
            algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError:
        return None

    user_id = payload.get("user_id")
    role = payload.get("role")
    if user_id is None or role is None:
        return None

    return TokenData(user_id=user_id, role=role)

async def get_current_user(
    token: str = Depends(oauth2_scheme), 
    db: AsyncSession = Depends(get_db)
) -> User:
    """
    FastAPI 依賴項：驗證 Token 並回傳 User Model (用於 REST API)
    回傳的 User 就是後續所有 Service 操作的 actor
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="無法驗證憑證",
        headers={"WWW-Authenticate": "Bearer"},
    )

    token_data = verify_access_token(token)
    if token_data is None:
        raise credentials_exception

    user = await UserRepository(db).get_user_by_id(user_id=token_data.user_id)
    if user is None:
        raise credentials_exception

    if not user.is_active:
        raise HTTPException(status_code=400, detail="此帳號已被停權")

    return user

async def get_current_user_from_websocket_token(
    websocket: WebSocket,
    token: str = Query(...), # 從 Query 參數 (?token=...) 讀取
    db: AsyncSession = Depends(get_db)
) -> User:
    """
    WebSocket 專用的 Token 驗證依賴
    """
    credentials_exception = WebSocketDisconnect(
        code=status.WS_1008_POLICY_VIOLATION,
        reason="無法驗證憑證"
    )
    
    token_data = verify_access_token(token)
    if token_data is None:
        raise credentials_exception
        
    user = await UserRepository(db).get_user_by_id(user_id=token_data.user_id)
    if user is None or not user.is_active:
        raise credentials_exception
        
    return user
