from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ksiegai.api.deps import get_request_auth_context
from ksiegai.business.profiles.schemas import BusinessProfileCreate, BusinessProfileRead, BusinessProfileUpdate
from ksiegai.business.profiles.service import business_profile_service
from ksiegai.core.database import get_db
from ksiegai.platform.security.context import AuthContext


router = APIRouter(prefix="/api/profiles", tags=["profiles"])


@router.post("", response_model=BusinessProfileRead, status_code=status.HTTP_201_CREATED)
def create_profile(
    payload: BusinessProfileCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> BusinessProfileRead:
    return business_profile_service.create_profile(db, ctx, payload)


@router.get("", response_model=list[BusinessProfileRead])
def list_profiles(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> list[BusinessProfileRead]:
    return business_profile_service.list_profiles(db, ctx)


@router.get("/{profile_id}", response_model=BusinessProfileRead)
def get_profile(
    profile_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> BusinessProfileRead:
    return business_profile_service.get_profile(db, ctx, profile_id)


@router.patch("/{profile_id}", response_model=BusinessProfileRead)
def update_profile(
    profile_id: uuid.UUID,
    payload: BusinessProfileUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> BusinessProfileRead:
    return business_profile_service.update_profile(db, ctx, profile_id, payload)


@router.post("/{profile_id}/set-default", response_model=BusinessProfileRead)
def set_default_profile(
    profile_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_request_auth_context),
) -> BusinessProfileRead:
    return business_profile_service.set_default_profile(db, ctx, profile_id)
