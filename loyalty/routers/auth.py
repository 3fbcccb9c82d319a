# loyalty/routers/auth.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from loyalty.core.database import get_db
from loyalty.models.app_user import AppUser
from loyalty.models.shop_user import ShopUser
from loyalty.services.auth import create_customer_token, create_shop_user_token, verify_password

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


class LoginPayload(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)
    # staff com o mesmo e-mail em várias lojas precisa escolher a loja
    shop_id: Optional[int] = None


def _invalid_credentials() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


@router.post("/customer/token")
def customer_token(payload: LoginPayload, db: Session = Depends(get_db)):
    normalized_email = payload.email.strip().lower()
    customer = (
        db.query(AppUser)
        .filter(func.lower(AppUser.email) == normalized_email, AppUser.is_active.is_(True))
        .first()
    )
    if not customer or not verify_password(payload.password, customer.password_hash):
        logger.info("Customer login failed email=%s", normalized_email)
        raise _invalid_credentials()

    token = create_customer_token(customer.id)
    return {"access_token": token, "token_type": "bearer"}


@router.post("/shop/token")
def shop_token(payload: LoginPayload, db: Session = Depends(get_db)):
    normalized_email = payload.email.strip().lower()
    query = db.query(ShopUser).filter(
        func.lower(ShopUser.email) == normalized_email,
        ShopUser.active.is_(True),
    )
    if payload.shop_id is not None:
        query = query.filter(ShopUser.shop_id == payload.shop_id)

    matched = [user for user in query.all() if verify_password(payload.password, user.password_hash)]
    if len(matched) != 1:
        logger.info("Shop login failed email=%s shop_id=%s", normalized_email, payload.shop_id)
        raise _invalid_credentials()

    user = matched[0]
    token = create_shop_user_token(user.id, user.shop_id, user.role)
    return {"access_token": token, "token_type": "bearer", "shop_id": user.shop_id, "role": user.role}
