"""API routes for the caller's profile (AI consent)."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from expense_api.api.dependencies import get_profile_store
from expense_api.core.security import get_current_user_id
from expense_api.models.schemas import ProfileRead, ProfileUpdate
from expense_api.services.stores import ProfileStore

router = APIRouter(prefix="/profiles", tags=["profiles"])


@router.get("/me", response_model=ProfileRead)
async def read_my_profile(
    user_id: str = Depends(get_current_user_id),
    store: ProfileStore = Depends(get_profile_store),
) -> ProfileRead:
    consent = await store.get_consent(user_id)
    return ProfileRead(id=user_id, ai_consent_given=consent)


@router.patch("/me", response_model=ProfileRead)
async def update_my_profile(
    payload: ProfileUpdate,
    user_id: str = Depends(get_current_user_id),
    store: ProfileStore = Depends(get_profile_store),
) -> ProfileRead:
    """Grant or revoke consent for AI receipt processing."""
    consent = await store.set_consent(user_id, payload.ai_consent_given)
    return ProfileRead(id=user_id, ai_consent_given=consent)
