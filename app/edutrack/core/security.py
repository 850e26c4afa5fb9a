from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi.security import OAuth2PasswordBearer
from jose import jwt
from pydantic import BaseModel

from app.edutrack.core.config import settings
from app.edutrack.core.context import Identity, build_identity

# Tokens are issued by the external auth service; this service only verifies them.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


class TokenData(BaseModel):
    sub: str
    role: str
    warehouse_id: str | None = None
    council_id: str | None = None
    school_id: str | None = None

    def to_identity(self) -> Identity:
        return build_identity(
            user_id=self.sub,
            role=self.role,
            warehouse_id=self.warehouse_id,
            council_id=self.council_id,
            school_id=self.school_id,
        )


def create_access_token(data: dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict[str, Any]:
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


def create_identity_token(identity: Identity, expires_delta: Optional[timedelta] = None) -> str:
    return create_access_token(
        {
            "sub": identity.user_id,
            "role": identity.role,
            "warehouse_id": identity.warehouse_id,
            "council_id": identity.council_id,
            "school_id": identity.school_id,
        },
        expires_delta=expires_delta,
    )
