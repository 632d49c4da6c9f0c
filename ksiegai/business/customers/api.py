from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ksiegai.api.deps import get_request_auth_context
from ksiegai.business.customers.schemas import CustomerCreate, CustomerRead, CustomerUpdate
from ksiegai.business.customers.service import customer_service
from ksiegai.core.database import get_db
from ksiegai.platform.security.context import AuthContext


router = APIRouter(prefix="/api/customers", tags=["customers"])


@router.post("", response_model=CustomerRead, status_code=status.HTTP_201_CREATED)
def create_customer(
    payload: CustomerCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> CustomerRead:
    return customer_service.create_customer(db, ctx, payload)


@router.get("", response_model=list[CustomerRead])
def list_customers(
    business_profile_id: uuid.UUID = Query(),
    search: str | None = Query(default=None),
    customer_type: str | None = Query(default=None),
    active_only: bool = Query(default=True),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> list[CustomerRead]:
    return customer_service.list_customers(
        db,
        ctx,
        business_profile_id=business_profile_id,
        search=search,
        customer_type=customer_type,
        active_only=active_only,
    )


@router.get("/{customer_id}", response_model=CustomerRead)
def get_customer(
    customer_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> CustomerRead:
    return customer_service.get_customer(db, ctx, customer_id)


@router.patch("/{customer_id}", response_model=CustomerRead)
def update_customer(
    customer_id: uuid.UUID,
    payload: CustomerUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> CustomerRead:
    return customer_service.update_customer(db, ctx, customer_id, payload)


@router.post("/{customer_id}/deactivate", response_model=CustomerRead)
def deactivate_customer(
    customer_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> CustomerRead:
    return customer_service.deactivate_customer(db, ctx, customer_id)
