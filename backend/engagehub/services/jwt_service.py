# /engagehub/services/jwt_service.py

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from fastapi import HTTPException, status

from engagehub.config.settings import settings

# Creates and verifies the signed bearer tokens handed out by every login
# flow. A token is only honoured while its row exists in the role's token
# collection; that check lives in utils/dependencies.py.

class JWTService:
    def __init__(self, secret_key: str, algorithm: str = "HS256"):
        self.secret_key = secret_key
        self.algorithm = algorithm

    def create_access_token(self, data: dict, expires_delta: Optional[timedelta] = None) -> str:
        to_encode = data.copy()
        now = datetime.now(timezone.utc)
        if expires_delta:
            expire = now + expires_delta
        else:
            expire = now + timedelta(hours=settings.jwt_access_token_expire_hours)

        to_encode.update({
            "exp": expire,
            "iat": now,
            "jti": str(uuid.uuid4())
        })
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def create_role_token(self, role: str, account_id: str, expires_delta: Optional[timedelta] = None) -> str:
        return self.create_access_token(
            {"sub": account_id, "role": role, "type": "access"},
            expires_delta=expires_delta,
        )

    def decode(self, token: str) -> dict:
        """Raises JWTError on a bad signature or an expired token."""
        return jwt.decode(token, self.secret_key, algorithms=[self.algorithm])

    def verify_token(self, token: str) -> dict:
        try:
            return self.decode(token)
        except JWTError as e:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Token verification failed: {e}",
                headers={"WWW-Authenticate": "Bearer"},
            )

# Globally accessible instance
jwt_service = JWTService(settings.jwt_secret_key, settings.jwt_algorithm)
