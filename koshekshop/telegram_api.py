"""
Прямые вызовы Telegram Bot API из бэкенда витрины (без aiogram)
и проверка подписи initData из Mini App.
"""

import hashlib
import hmac
import json
import logging
from typing import Optional, Union
from urllib.parse import parse_qsl

import httpx

from koshekshop import config

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"


async def send_telegram_message(chat_id: Union[int, str], text: str, reply_markup: dict = None) -> bool:
    """Отправить сообщение через Telegram Bot API. Никогда не бросает исключений."""
    if not config.TG_BOT_TOKEN:
        logger.warning("TG_BOT_TOKEN is not set, message not sent")
        return False

    url = f"{TELEGRAM_API_URL}/bot{config.TG_BOT_TOKEN}/sendMessage"
    payload = {
        "chat_id": chat_id,
        "text": text,
        "parse_mode": "HTML"
    }
    if reply_markup:
        payload["reply_markup"] = reply_markup

    logger.info(f"Sending Telegram message to {chat_id}, text length: {len(text)}")

    async with httpx.AsyncClient(timeout=30.0) as client:
        try:
            response = await client.post(url, json=payload)

            if response.status_code != 200:
                logger.error(f"Telegram API error: {response.status_code} - {response.text[:500]}")
                return False

            logger.info(f"Telegram message sent successfully to {chat_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to send telegram message to {chat_id}: {e}")
            return False


def validate_init_data(init_data: str, bot_token: Optional[str] = None) -> Optional[dict]:
    """
    Проверяет подпись initData от Telegram Web App.
    Возвращает user из initData, если подпись валидна, иначе None.
    """
    bot_token = bot_token or config.TG_BOT_TOKEN
    if not init_data or not bot_token:
        return None

    try:
        parsed_data = dict(parse_qsl(init_data, keep_blank_values=True))

        received_hash = parsed_data.pop("hash", None)
        if not received_hash:
            logger.warning("No hash in initData")
            return None

        # ключи в алфавитном порядке
        data_check_string = "\n".join(f"{k}={v}" for k, v in sorted(parsed_data.items()))

        # secret_key = HMAC_SHA256(key="WebAppData", msg=bot_token)
        secret_key = hmac.new(b"WebAppData", bot_token.encode(), hashlib.sha256).digest()
        calculated_hash = hmac.new(secret_key, data_check_string.encode(), hashlib.sha256).hexdigest()

        if not hmac.compare_digest(calculated_hash, received_hash):
            logger.warning(f"Invalid Telegram hash: received {received_hash[:20]}...")
            return None

        if "user" not in parsed_data:
            return None

        user_data = json.loads(parsed_data["user"])
        logger.info(f"Validated user: {user_data.get('id')}")
        return user_data

    except Exception as e:
        logger.error(f"Error validating initData: {e}")
        return None


def chat_id_from_init_data(init_data: Optional[str]) -> Optional[str]:
    """chat_id покупателя - только из initData с валидной подписью"""
    user = validate_init_data(init_data) if init_data else None
    if user and user.get("id") is not None:
        return str(user["id"])
    return None
