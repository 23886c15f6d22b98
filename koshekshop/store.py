"""
In-memory хранилище каталога витрины.

Товары и промокоды живут только в памяти процесса и заново
заполняются импортом из Google Sheets.
"""

import logging
import time
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional

from koshekshop.promocodes import Promocode
from koshekshop.sheets import SheetProduct

logger = logging.getLogger(__name__)


@dataclass
class Product(SheetProduct):
    created_at: float = 0.0


class CatalogStore:
    def __init__(self):
        self._products: Dict[str, Product] = {}
        self._promocodes: List[Promocode] = []

    # ===== Товары =====

    def upsert_products(self, items: List[SheetProduct]):
        """Слияние по slug: новые поля перезаписывают старые, created_at сохраняется"""
        for item in items:
            existing = self._products.get(item.slug)
            fields = asdict(item)
            fields.pop("created_at", None)
            self._products[item.slug] = Product(
                **fields,
                created_at=existing.created_at if existing else time.time()
            )

    def list_products(self) -> List[Product]:
        return list(self._products.values())

    def get_product(self, slug: str) -> Optional[Product]:
        return self._products.get(slug)

    def decrease_product_stock(self, slug: str, quantity: int) -> bool:
        """
        Списать остаток. False - товар неизвестен, остаток не ведётся
        или его не хватило (тогда остаток обнуляется).
        """
        product = self._products.get(slug)
        if product is None or product.stock is None:
            return False

        if product.stock < quantity:
            logger.warning(f"Not enough stock for '{slug}': have {product.stock}, need {quantity}")
            product.stock = 0
            return False

        product.stock -= quantity
        logger.info(f"Stock for '{slug}' decreased by {quantity}, left {product.stock}")
        return True

    # ===== Промокоды =====

    def load_promocodes(self, promocodes: List[Promocode]):
        self._promocodes = list(promocodes)

    def list_promocodes(self) -> List[Promocode]:
        return self._promocodes

    def find_promocode(self, code: str) -> Optional[Promocode]:
        normalized = (code or "").strip().upper()
        for promo in self._promocodes:
            if promo.code == normalized:
                return promo
        return None


# Глобальное хранилище витрины
catalog = CatalogStore()
