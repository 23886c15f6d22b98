import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict

from koshekshop import sheets
from koshekshop.admin.auth import require_auth
from koshekshop.admin.deps import get_spreadsheet, refresh_storefront, run_sheet, to_bool
from koshekshop.sheets import SheetProduct

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["products"], dependencies=[Depends(require_auth)])


class ProductIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = None
    slug: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    price_rub: Any = None
    discount_price_rub: Any = None
    badge_text: Optional[str] = None
    images: Any = None
    active: Any = None
    stock: Any = None
    article: Optional[str] = None


class ReorderIn(BaseModel):
    category: Optional[str] = None
    slugs: Any = None


def to_number(value) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        return sheets.parse_float(value)
    return None


def validate_product_fields(body: ProductIn) -> dict:
    """Проверки, общие для создания и редактирования. Возвращает нормализованные поля."""
    if not (body.title or "").strip() or not (body.slug or "").strip() or not (body.category or "").strip():
        raise HTTPException(status_code=400, detail="missing_required_fields")

    price = to_number(body.price_rub)
    if not price or price <= 0:
        raise HTTPException(status_code=400, detail="invalid_price")

    discount = None
    if body.discount_price_rub not in (None, ""):
        discount = to_number(body.discount_price_rub)
        if discount is None or discount <= 0:
            raise HTTPException(status_code=400, detail="invalid_discount_price")
        if discount >= price:
            raise HTTPException(status_code=400, detail="discount_price_must_be_less")

    images: List[str] = []
    if body.images is not None:
        if not isinstance(body.images, list) or not all(isinstance(i, str) for i in body.images):
            raise HTTPException(status_code=400, detail="invalid_images")
        images = [i.strip() for i in body.images if i.strip()]

    stock = None
    if body.stock not in (None, ""):
        stock_value = to_number(body.stock)
        if stock_value is None or stock_value < 0 or stock_value != int(stock_value):
            raise HTTPException(status_code=400, detail="invalid_stock")
        stock = int(stock_value)

    return {
        "slug": body.slug.strip(),
        "title": body.title.strip(),
        "description": (body.description or "").strip() or None,
        "price_rub": price,
        "discount_price_rub": discount,
        "badge_text": (body.badge_text or "").strip() or None,
        "images": images,
        "active": to_bool(body.active),
        "stock": stock,
    }


def resolve_category(category: str) -> str:
    sheet_name = sheets.find_category_sheet(category)
    if not sheet_name:
        raise HTTPException(status_code=400, detail="invalid_category")
    return sheet_name


@router.get("")
async def list_products(spreadsheet=Depends(get_spreadsheet)):
    products = await run_sheet(sheets.fetch_products, spreadsheet)
    logger.info(f"Products loaded: {len(products)}")
    # порядок строк таблицы сохраняется
    return {"products": [p.to_dict() for p in products]}


@router.post("")
async def create_product(body: ProductIn, spreadsheet=Depends(get_spreadsheet)):
    fields = validate_product_fields(body)
    article = (body.article or "").strip() or None

    existing = await run_sheet(sheets.fetch_products, spreadsheet)
    if article and any(p.article == article for p in existing):
        raise HTTPException(status_code=400, detail="article_already_exists")
    if any(p.slug == fields["slug"] for p in existing):
        raise HTTPException(status_code=400, detail="slug_already_exists")

    category = resolve_category(body.category)
    product = SheetProduct(category=category, article=article, **fields)

    await run_sheet(sheets.append_product, spreadsheet, category, product)
    logger.info(f"Product '{product.slug}' created (article {product.article})")

    await refresh_storefront()
    return {"success": True, "product": product.to_dict()}


@router.post("/reorder")
async def reorder_products(body: ReorderIn, spreadsheet=Depends(get_spreadsheet)):
    if not body.category or not isinstance(body.slugs, list) or not body.slugs:
        raise HTTPException(status_code=400, detail="invalid_request")

    category = sheets.normalize_sheet_name(body.category)
    slugs = [str(s) for s in body.slugs]

    try:
        await run_sheet(sheets.reorder_products, spreadsheet, category, slugs)
    except sheets.SheetsError as e:
        logger.error(f"Reorder of '{category}' failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    logger.info(f"Products order updated in '{category}' ({len(slugs)} slugs)")
    await refresh_storefront()
    return {"success": True}


@router.put("/{slug}")
async def update_product(slug: str, body: ProductIn, spreadsheet=Depends(get_spreadsheet)):
    fields = validate_product_fields(body)

    existing = await run_sheet(sheets.fetch_products, spreadsheet)
    old = next((p for p in existing if p.slug == slug), None)
    if old is None:
        raise HTTPException(status_code=404, detail="product_not_found")

    if fields["slug"] != slug and any(p.slug == fields["slug"] for p in existing):
        raise HTTPException(status_code=400, detail="slug_already_exists")

    category = resolve_category(body.category)
    # артикул не меняется
    product = SheetProduct(category=category, article=old.article, id=old.id, **fields)

    if old.category.lower() != category.lower():
        # перенос в другой лист
        await run_sheet(sheets.delete_product, spreadsheet, old.category, slug)
        await run_sheet(sheets.append_product, spreadsheet, category, product)
    else:
        await run_sheet(sheets.update_product, spreadsheet, category, slug, product)

    logger.info(f"Product '{slug}' updated -> '{product.slug}' in '{category}'")
    await refresh_storefront()
    return {"success": True, "product": product.to_dict()}


@router.delete("/{slug}")
async def delete_product(slug: str, spreadsheet=Depends(get_spreadsheet)):
    existing = await run_sheet(sheets.fetch_products, spreadsheet)
    product = next((p for p in existing if p.slug == slug), None)
    if product is None:
        raise HTTPException(status_code=404, detail="product_not_found")

    try:
        await run_sheet(sheets.delete_product, spreadsheet, product.category, slug)
    except sheets.RowNotFoundError:
        raise HTTPException(status_code=404, detail="product_not_found")

    logger.info(f"Product '{slug}' deleted")
    await refresh_storefront()
    return {"success": True}
