import logging
import re
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from koshekshop import sheets
from koshekshop.admin.auth import require_auth
from koshekshop.admin.deps import get_spreadsheet, refresh_storefront, run_sheet, to_bool
from koshekshop.promocodes import (
    PROMOCODE_TYPES,
    Promocode,
    append_promocode,
    delete_promocode,
    fetch_promocodes,
    parse_datetime,
    update_promocode,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/promocodes", tags=["promocodes"], dependencies=[Depends(require_auth)])

CODE_RE = re.compile(r"^[A-Z0-9_-]+$")


class PromocodeIn(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    code: Any = None
    type: Any = None
    value: Any = None
    expires_at: Any = Field(None, alias="expiresAt")
    active: Any = None
    product_slugs: Any = Field(None, alias="productSlugs")


def validate_code(raw) -> str:
    if not raw or not isinstance(raw, str):
        raise HTTPException(status_code=400, detail="invalid_code")
    code = raw.strip().upper()
    if len(code) < 3 or len(code) > 50:
        raise HTTPException(status_code=400, detail="code_length_invalid")
    if not CODE_RE.match(code):
        raise HTTPException(status_code=400, detail="invalid_code_format")
    return code


def build_promocode(code: str, body: PromocodeIn) -> Promocode:
    if body.type not in PROMOCODE_TYPES:
        raise HTTPException(status_code=400, detail="invalid_type")

    value = body.value
    if isinstance(value, str):
        value = sheets.parse_float(value)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not value > 0 or value == float("inf"):
        raise HTTPException(status_code=400, detail="invalid_value")
    if body.type == "percent" and value > 100:
        raise HTTPException(status_code=400, detail="percent_too_high")

    expires_at = None
    if body.expires_at:
        expires_at = parse_datetime(body.expires_at) if isinstance(body.expires_at, str) else None
        if expires_at is None:
            raise HTTPException(status_code=400, detail="invalid_expires_at")

    slugs = []
    if isinstance(body.product_slugs, list):
        slugs = [s.strip() for s in body.product_slugs if isinstance(s, str) and s.strip()]

    return Promocode(
        code=code,
        type=body.type,
        value=float(value),
        active=to_bool(body.active),
        expires_at=expires_at,
        product_slugs=slugs,
    )


@router.get("")
async def list_promocodes(spreadsheet=Depends(get_spreadsheet)):
    promocodes = await run_sheet(fetch_promocodes, spreadsheet)
    logger.info(f"Promocodes loaded: {len(promocodes)}")
    return {"promocodes": [p.to_dict() for p in promocodes]}


@router.post("")
async def create_promocode(body: PromocodeIn, spreadsheet=Depends(get_spreadsheet)):
    code = validate_code(body.code)
    promo = build_promocode(code, body)

    existing = await run_sheet(fetch_promocodes, spreadsheet)
    if any(p.code == code for p in existing):
        raise HTTPException(status_code=400, detail="code_already_exists")

    await run_sheet(append_promocode, spreadsheet, promo)
    logger.info(f"Promocode {code} created")

    await refresh_storefront()
    return {"success": True, "promocode": promo.to_dict()}


@router.put("/{code}")
async def edit_promocode(code: str, body: PromocodeIn, spreadsheet=Depends(get_spreadsheet)):
    # сам код не меняется
    code = code.strip().upper()
    promo = build_promocode(code, body)

    try:
        await run_sheet(update_promocode, spreadsheet, code, promo)
    except sheets.RowNotFoundError:
        raise HTTPException(status_code=404, detail="promocode_not_found")

    logger.info(f"Promocode {code} updated")
    await refresh_storefront()
    return {"success": True, "promocode": promo.to_dict()}


@router.delete("/{code}")
async def remove_promocode(code: str, spreadsheet=Depends(get_spreadsheet)):
    code = code.strip().upper()
    try:
        await run_sheet(delete_promocode, spreadsheet, code)
    except sheets.RowNotFoundError:
        raise HTTPException(status_code=404, detail="promocode_not_found")

    logger.info(f"Promocode {code} deleted")
    await refresh_storefront()
    return {"success": True}
