from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
from jose import JWTError, jwt

from loyalty.core.config import JWT_ALGORITHM, JWT_EXPIRE_MINUTES, JWT_SECRET_KEY

ROLE_CUSTOMER = "customer"
ROLE_SHOP_USER = "shop_user"

# bcrypt ignora tudo além de 72 bytes
_BCRYPT_MAX_BYTES = 72


def _password_bytes(password: str) -> bytes:
    return (password or "").encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(_password_bytes(plain_password), password_hash.encode("utf-8"))
    except ValueError:
        # hash fora do formato bcrypt
        return False


def create_access_token(
    subject: str,
    *,
    role: str,
    extra: Optional[Dict[str, Any]] = None,
    expires_minutes: int = JWT_EXPIRE_MINUTES,
) -> str:
    """Token Bearer; ``role`` separa cliente do app e staff da loja.

    ``sub`` vai sempre como string (python-jose recusa outros tipos).
    """
    issued_at = datetime.now(timezone.utc)
    claims: Dict[str, Any] = {
        **(extra or {}),
        "sub": str(subject),
        "role": role,
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + timedelta(minutes=expires_minutes)).timestamp()),
    }
    return jwt.encode(claims, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def create_customer_token(customer_id: int) -> str:
    return create_access_token(str(customer_id), role=ROLE_CUSTOMER)


def create_shop_user_token(user_id: int, shop_id: int, shop_role: str) -> str:
    return create_access_token(
        str(user_id),
        role=ROLE_SHOP_USER,
        extra={"shop_id": int(shop_id), "shop_role": shop_role},
    )


def decode_access_token(token: str) -> Dict[str, Any]:
    """Payload do JWT; ValueError se inválido ou expirado."""
    try:
        return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError as exc:
        raise ValueError("Invalid or expired token") from exc
