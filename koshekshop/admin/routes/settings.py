import logging
import re
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from koshekshop.admin.auth import require_auth
from koshekshop.admin.deps import get_spreadsheet, refresh_storefront, run_sheet
from koshekshop.orders_settings import OrdersSettings, fetch_orders_settings, save_orders_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/settings", tags=["settings"], dependencies=[Depends(require_auth)])

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class OrdersStatusIn(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    orders_closed: Any = Field(None, alias="ordersClosed")
    close_date: Any = Field(None, alias="closeDate")


@router.get("/orders-status")
async def get_orders_status(spreadsheet=Depends(get_spreadsheet)):
    settings = await run_sheet(fetch_orders_settings, spreadsheet, True)
    return settings.to_dict()


@router.put("/orders-status")
async def put_orders_status(body: OrdersStatusIn, spreadsheet=Depends(get_spreadsheet)):
    if not isinstance(body.orders_closed, bool):
        raise HTTPException(status_code=400, detail="ordersClosed must be a boolean")

    if body.close_date not in (None, ""):
        if not isinstance(body.close_date, str) or not DATE_RE.match(body.close_date):
            raise HTTPException(status_code=400, detail="closeDate must be in format YYYY-MM-DD")

    settings = OrdersSettings(orders_closed=body.orders_closed, close_date=body.close_date or None)
    await run_sheet(save_orders_settings, spreadsheet, settings)
    logger.info(f"Orders settings saved: closed={settings.orders_closed}, close_date={settings.close_date}")

    await refresh_storefront()
    return {"success": True}
