"""API routes for the canonical expense categories."""

from fastapi import APIRouter, Depends

from expense_api.api.dependencies import get_category_store
from expense_api.core.security import get_current_user_id
from expense_api.models.schemas import CategoryList
from expense_api.services.stores import CategoryStore

router = APIRouter(prefix="/categories", tags=["categories"])


@router.get("", response_model=CategoryList)
async def list_categories(
    user_id: str = Depends(get_current_user_id),
    store: CategoryStore = Depends(get_category_store),
) -> CategoryList:
    return CategoryList(data=await store.list())
