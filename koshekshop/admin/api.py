"""
FastAPI сервер админ-панели

Управление товарами, категориями, промокодами и приёмом заказов
прямо в Google Sheets. После каждого изменения витрина
переимпортирует таблицу.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from koshekshop import config
from koshekshop.admin.routes import auth, categories, products, promocodes, settings, upload
from koshekshop.errors import install_error_handlers
from koshekshop.log import setup_logging

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not config.JWT_SECRET:
        raise RuntimeError("JWT_SECRET is not set")
    if not config.GOOGLE_SHEET_ID:
        logger.warning("⚠️ GOOGLE_SHEET_ID is not set, sheet routes will fail")
    logger.info(f"Admin backend started, frontend origin {config.ADMIN_FRONTEND_URL}")
    yield


app = FastAPI(title="Koshek Jewerly Admin API", lifespan=lifespan)
install_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.ADMIN_FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.get("/health")
async def health():
    return {"status": "ok"}


app.include_router(auth.router)
app.include_router(products.router)
app.include_router(categories.router)
app.include_router(promocodes.router)
app.include_router(settings.router)
app.include_router(upload.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.ADMIN_PORT)
