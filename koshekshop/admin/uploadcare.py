"""
Загрузка фото товаров в Uploadcare через Direct Upload API
https://uploadcare.com/api-refs/upload-api/
"""

import asyncio
import logging
from typing import Optional
from urllib.parse import urlparse

import httpx

from koshekshop import config

logger = logging.getLogger(__name__)

UPLOAD_URL = "https://upload.uploadcare.com/base/"
FILES_API_URL = "https://api.uploadcare.com/files"
MAX_RETRIES = 3


class UploadcareError(Exception):
    pass


async def post_with_retry(client: httpx.AsyncClient, data: dict, files: dict) -> httpx.Response:
    """Повтор только сетевых ошибок: паузы 1s, 2s, 3s"""
    for attempt in range(MAX_RETRIES + 1):
        try:
            return await client.post(UPLOAD_URL, data=data, files=files)
        except httpx.TransportError as e:
            if attempt >= MAX_RETRIES:
                raise
            delay = attempt + 1
            logger.warning(f"Uploadcare network error ({e!r}), retry {attempt + 1} in {delay}s")
            await asyncio.sleep(delay)


async def fetch_cdn_domain(client: httpx.AsyncClient, file_id: str) -> Optional[str]:
    """Домен CDN проекта из REST API; None - если узнать не удалось"""
    try:
        response = await client.get(
            f"{FILES_API_URL}/{file_id}/",
            headers={
                "Authorization": f"Uploadcare.Simple {config.UPLOADCARE_PUBLIC_KEY}:{config.UPLOADCARE_SECRET_KEY}",
                "Accept": "application/vnd.uploadcare-v0.7+json",
            },
        )
        response.raise_for_status()
        info = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"Failed to get Uploadcare file info for {file_id}: {e}")
        return None

    cdn_url = info.get("cdn_url") or info.get("original_file_url") or info.get("url")
    if not cdn_url:
        return None
    return urlparse(cdn_url).hostname


async def upload_to_uploadcare(content: bytes, filename: str, content_type: str) -> str:
    """Загружает файл и возвращает URL вида https://{domain}/{uuid}/"""
    public_key = config.UPLOADCARE_PUBLIC_KEY
    if not public_key or not config.UPLOADCARE_SECRET_KEY:
        raise UploadcareError("UPLOADCARE_PUBLIC_KEY and UPLOADCARE_SECRET_KEY are required")

    logger.info(f"Uploading {filename} ({len(content)} bytes) to Uploadcare")

    async with httpx.AsyncClient(timeout=60.0) as client:
        try:
            response = await post_with_retry(
                client,
                data={"UPLOADCARE_PUB_KEY": public_key, "UPLOADCARE_STORE": "1"},
                files={"file": (filename, content, content_type)},
            )
        except httpx.TransportError as e:
            logger.error(f"Uploadcare is unreachable: {e!r}")
            raise UploadcareError("Uploadcare is unreachable, try again later") from e

        if response.status_code != 200:
            logger.error(f"Uploadcare error: {response.status_code} - {response.text[:300]}")
            raise UploadcareError(f"Uploadcare upload failed: {response.status_code}")

        file_id = response.json().get("file")
        if not file_id:
            raise UploadcareError("Uploadcare did not return file id")

        domain = await fetch_cdn_domain(client, file_id)

    domain = domain or f"{public_key[:11]}.ucarecdn.com"
    file_url = f"https://{domain}/{file_id}/"
    logger.info(f"File {filename} uploaded: {file_url}")
    return file_url
