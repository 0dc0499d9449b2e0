import jwt
from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel
from typing import Optional

from passr.config import JWT_SECRET_KEY, JWT_ALGORITHM

class TokenUser(BaseModel):
    id: str
    email: Optional[str] = None
    name: Optional[str] = None

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")  # Token issuance lives in the auth service

def decode_access_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

async def get_current_user(token: str = Depends(oauth2_scheme)) -> TokenUser:
    payload = decode_access_token(token)
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    return TokenUser(id=str(user_id), email=payload.get("email"), name=payload.get("name"))
