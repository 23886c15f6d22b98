"""
Робокасса
=========

Ссылка на оплату подписывается паролем #1:
    md5("MerchantLogin:OutSum:InvId:Password1")

Result URL (callback об оплате) проверяется паролем #2:
    md5("OutSum:InvId:Password2[:Shp_a:Shp_b...]").upper()
Shp_* параметры добавляются значениями в алфавитном порядке ключей.
"""

import hashlib
import hmac
import logging
from typing import Dict, Optional
from urllib.parse import urlencode

from koshekshop import config

logger = logging.getLogger(__name__)

# одинаковый для теста и боя, тест включается IsTest=1
ROBOKASSA_URL = "https://auth.robokassa.ru/Merchant/Index.aspx"


class RobokassaConfigError(Exception):
    """Не заданы логин магазина или пароль #1"""


def format_out_sum(amount: float) -> str:
    return f"{amount:.2f}"


def payment_signature(merchant_login: str, out_sum: str, invoice_id: str, password: str) -> str:
    raw = f"{merchant_login}:{out_sum}:{invoice_id}:{password}"
    return hashlib.md5(raw.encode("utf-8")).hexdigest()


def result_signature(out_sum: str, invoice_id: str, password: str,
                     shp_params: Optional[Dict[str, str]] = None) -> str:
    raw = f"{out_sum}:{invoice_id}:{password}"
    for key in sorted(shp_params or {}):
        raw += f":{shp_params[key]}"
    return hashlib.md5(raw.encode("utf-8")).hexdigest().upper()


def generate_payment_url(
    order_id: str,
    invoice_id: int,
    amount: float,
    description: Optional[str] = None,
    email: Optional[str] = None,
    success_url: Optional[str] = None,
    fail_url: Optional[str] = None
) -> str:
    """Ссылка на страницу оплаты Робокассы"""
    login = config.ROBOKASSA_MERCHANT_LOGIN
    password = config.ROBOKASSA_PASSWORD_1
    if not login or not password:
        raise RobokassaConfigError("ROBOKASSA_MERCHANT_LOGIN and ROBOKASSA_PASSWORD_1 are required")

    out_sum = format_out_sum(amount)
    params = {
        "MerchantLogin": login,
        "OutSum": out_sum,
        "InvId": str(invoice_id),
        "SignatureValue": payment_signature(login, out_sum, str(invoice_id), password),
    }
    if description:
        params["Description"] = description
    if email:
        params["Email"] = email
    if success_url:
        params["SuccessURL"] = success_url
    if fail_url:
        params["FailURL"] = fail_url
    if config.ROBOKASSA_TEST:
        params["IsTest"] = "1"

    logger.info(
        f"Robokassa payment URL for {order_id}: InvId={invoice_id}, OutSum={out_sum}, "
        f"test={config.ROBOKASSA_TEST}"
    )
    return f"{ROBOKASSA_URL}?{urlencode(params)}"


def verify_result_signature(out_sum: str, invoice_id: str, signature: str,
                            params: Optional[Dict[str, str]] = None) -> bool:
    """
    Проверка подписи callback. OutSum берётся ровно в том виде,
    в котором его прислала Робокасса.
    """
    password = config.ROBOKASSA_PASSWORD_2
    if not password:
        logger.warning("ROBOKASSA_PASSWORD_2 is not set, callback rejected")
        return False

    try:
        amount = float(out_sum)
    except (TypeError, ValueError):
        amount = 0.0
    if not amount > 0 or amount == float("inf"):
        logger.error(f"Invalid OutSum from Robokassa: {out_sum!r}")
        return False

    if not signature:
        return False

    shp_params = {k: v for k, v in (params or {}).items() if k.startswith("Shp_")}
    expected = result_signature(out_sum, invoice_id, password, shp_params)

    if not hmac.compare_digest(signature.upper().encode("utf-8"), expected.encode("utf-8")):
        logger.warning(
            f"Invalid Robokassa signature: InvId={invoice_id}, OutSum={out_sum}, "
            f"shp={sorted(shp_params)}, password2 length={len(password)}"
        )
        return False

    return True
