import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from koshekshop.admin.auth import require_auth
from koshekshop.admin.deps import get_spreadsheet, refresh_storefront, run_sheet
from koshekshop.categories import Category, fetch_categories, save_categories

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/categories", tags=["categories"], dependencies=[Depends(require_auth)])


class CategoriesIn(BaseModel):
    categories: Any = None


def clean_categories(raw: list) -> list:
    """Невалидные записи отбрасываются, ключи приводятся к нижнему регистру"""
    valid = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        key = item.get("key")
        title = item.get("title")
        if not isinstance(key, str) or not key.strip():
            continue
        if not isinstance(title, str):
            continue

        description = item.get("description")
        image = item.get("image")
        position = item.get("image_position")
        valid.append(Category(
            key=key.strip().lower(),
            title=title.strip() or key.strip(),
            description=(description.strip() or None) if isinstance(description, str) else None,
            image=image.strip() if isinstance(image, str) else "",
            image_position=(position.strip() or "center") if isinstance(position, str) else "center",
            order=len(valid),
        ))
    return valid


@router.get("")
async def list_categories(spreadsheet=Depends(get_spreadsheet)):
    categories = await run_sheet(fetch_categories, spreadsheet)
    return {"categories": [c.to_dict() for c in categories]}


@router.put("")
async def put_categories(body: CategoriesIn, spreadsheet=Depends(get_spreadsheet)):
    if not isinstance(body.categories, list):
        raise HTTPException(status_code=400, detail="categories must be an array")

    categories = clean_categories(body.categories)
    await run_sheet(save_categories, spreadsheet, categories)
    logger.info(f"Categories saved: {len(categories)}")

    await refresh_storefront()
    return {"success": True, "categories": [c.to_dict() for c in categories]}
