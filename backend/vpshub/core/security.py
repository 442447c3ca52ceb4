from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Dict, Any
from jose import jwt, JWTError
from vpshub.core.config import settings

ALGORITHM = "HS256"

class Role(str, Enum):
    admin = "admin"
    reseller = "reseller"
    user = "user"
    service = "service"  # payment gateway callbacks

@dataclass(frozen=True)
class Principal:
    subject: str
    role: Role

    @property
    def actor(self) -> str:
        return f"{self.role.value}:{self.subject}"

    @property
    def numeric_id(self) -> Optional[int]:
        return int(self.subject) if self.subject.isdigit() else None

def create_access_token(subject: str, role: str, expires_minutes: Optional[int] = None) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode: Dict[str, Any] = {"sub": subject, "role": role, "exp": expire}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)

def decode_access_token(token: str) -> Principal:
    """Raises ValueError on a bad signature, expiry, or unknown role."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        raise ValueError("invalid token") from e
    sub = payload.get("sub")
    role = payload.get("role")
    if not sub or not role:
        raise ValueError("invalid token")
    return Principal(subject=str(sub), role=Role(role))
