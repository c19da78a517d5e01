# -*- coding: utf-8 -*-
"""
@Time    : 2025/7/8 19:51
@Author  : QIN2DIM
@GitHub  : https://github.com/QIN2DIM
@Desc    : Google Cloud Translation (v2) client, English <-> target language.
"""
import json

import httpx
from httpx import AsyncClient
from loguru import logger

from errors import TranslationError
from models import TranslationResult

TRANSLATE_ENDPOINT = "https://translation.googleapis.com/language/translate/v2"


def _is_service_account(credential: str) -> bool:
    try:
        payload = json.loads(credential)
    except ValueError:
        return False
    return (
        isinstance(payload, dict)
        and payload.get("type") == "service_account"
        and bool(payload.get("client_email"))
        and bool(payload.get("private_key"))
    )


class TranslationGateway:
    """
    翻译网关

    没有配置凭据时进入降级模式：不访问网络，直接返回带语言标记的占位译文，
    这样整条会话流程可以在离线环境中跑通。
    """

    def __init__(self, timeout: float = 75.0, transport: httpx.AsyncBaseTransport | None = None):
        self._timeout = timeout
        self._transport = transport

    async def translate(
        self, text: str, target_language: str, credential: str
    ) -> TranslationResult:
        """English -> target language"""
        if not credential:
            logger.warning("No translation API key provided, using placeholder translation")
            return TranslationResult(
                translated_text=f"[{target_language}] {text}", detected_source_language="en"
            )

        translated = await self._request(
            credential, {"q": text, "target": target_language, "format": "text"}
        )
        return TranslationResult(translated_text=translated, detected_source_language="en")

    async def translate_back(
        self, text: str, source_language: str, credential: str
    ) -> TranslationResult:
        """target language -> English"""
        if not credential:
            logger.warning("No translation API key provided, using placeholder translation")
            return TranslationResult(
                translated_text=f"[Translated from {source_language}] {text}",
                detected_source_language=source_language,
            )

        translated = await self._request(
            credential,
            {"q": text, "source": source_language, "target": "en", "format": "text"},
        )
        return TranslationResult(
            translated_text=translated, detected_source_language=source_language
        )

    async def _request(self, credential: str, body: dict) -> str:
        if _is_service_account(credential):
            raise TranslationError(
                "Translation failed: service account JSON is not supported, "
                "configure a plain Google Cloud API key instead"
            )

        try:
            async with AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    TRANSLATE_ENDPOINT, params={"key": credential}, json=body
                )
                response.raise_for_status()
                result = response.json()
        except httpx.HTTPStatusError as err:
            logger.error(f"Translation error: HTTP {err.response.status_code}")
            raise TranslationError(
                f"Translation failed: HTTP {err.response.status_code}"
            ) from err
        except (httpx.HTTPError, ValueError) as err:
            logger.error(f"Translation error: {err}")
            raise TranslationError(f"Translation failed: {err}") from err

        try:
            return result["data"]["translations"][0]["translatedText"]
        except (KeyError, IndexError, TypeError) as err:
            raise TranslationError(
                "Translation failed: Unexpected translation API response format"
            ) from err
