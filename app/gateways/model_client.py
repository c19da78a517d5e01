# -*- coding: utf-8 -*-
"""
@Time    : 2025/7/7 05:40
@Author  : QIN2DIM
@GitHub  : https://github.com/QIN2DIM
@Desc    : Chat model client for the openai / anthropic / custom provider profiles.
"""
import re
from typing import Any, Dict, Tuple

import httpx
from httpx import AsyncClient
from loguru import logger

from errors import ModelError
from models import ModelReply, ProviderSettings

ANTHROPIC_VERSION = "2023-06-01"

THINK_PATTERN = re.compile(r"<think>([\s\S]*?)</think>")


def extract_reasoning(content: str) -> ModelReply:
    """
    拆分模型回复中的 <think>...</think> 段落

    只处理第一个段落；段落为空时视为没有推理过程。
    """
    match = THINK_PATTERN.search(content)
    if match and match.group(1).strip():
        answer = THINK_PATTERN.sub("", content, count=1).strip()
        return ModelReply(answer=answer, reasoning_trace=match.group(1).strip())
    return ModelReply(answer=content, reasoning_trace=None)


def _build_request(settings: ProviderSettings, text: str) -> Tuple[str, Dict[str, str], dict]:
    """Returns ``(url, headers, body)`` for the selected provider."""
    body = {
        "model": settings.model_name,
        "messages": [{"role": "user", "content": text}],
        "max_tokens": settings.max_tokens,
        "temperature": settings.temperature,
    }
    headers = {"Content-Type": "application/json"}

    if settings.provider == "openai":
        headers["Authorization"] = f"Bearer {settings.api_key}"
        return f"https://{settings.api_host}/v1/chat/completions", headers, body

    if settings.provider == "anthropic":
        headers["x-api-key"] = settings.api_key
        headers["anthropic-version"] = ANTHROPIC_VERSION
        return f"https://{settings.api_host}/v1/messages", headers, body

    if settings.provider == "custom":
        headers["Authorization"] = f"Bearer {settings.api_key}"
        host = settings.api_host
        # The custom host is the full endpoint URL
        return (host if host.startswith("http") else f"https://{host}"), headers, body

    raise ModelError(f"Unsupported model provider: {settings.provider}", provider=settings.provider)


def _parse_openai(data: Any) -> str | None:
    try:
        return data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return None


def _parse_anthropic(data: Any) -> str | None:
    try:
        return data["content"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None


def _parse_custom(data: Any) -> str | None:
    if not isinstance(data, dict):
        return None

    message = data.get("message")
    if isinstance(message, str) and message:
        return message
    if isinstance(message, dict) and isinstance(message.get("content"), str):
        return message["content"]

    for parser in (_parse_openai, _parse_anthropic):
        if content := parser(data):
            return content

    response = data.get("response")
    return response if isinstance(response, str) and response else None


_PARSERS = {"openai": _parse_openai, "anthropic": _parse_anthropic, "custom": _parse_custom}


class ModelGateway:
    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._transport = transport

    async def query(self, text: str, settings: ProviderSettings) -> ModelReply:
        """
        向模型发送单轮对话

        Args:
            text: 原样发送给模型的文本
            settings: 提供方、模型、凭据与生成参数

        Returns:
            ModelReply，推理段落与最终答案分开存放

        Raises:
            ModelError: 缺少凭据/模型名、请求失败或无法解析的响应
        """
        provider = settings.provider
        if not settings.api_key:
            raise ModelError("API key is required", provider=provider)
        if not settings.model_name:
            raise ModelError("Model name is required", provider=provider)

        url, headers, body = _build_request(settings, text)
        logger.debug(f"Sending to model[{provider}/{settings.model_name}]: {text[:80]}")

        try:
            async with AsyncClient(timeout=settings.timeout, transport=self._transport) as client:
                response = await client.post(url, headers=headers, json=body)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as err:
            logger.error(f"API Error[{provider}]: HTTP {err.response.status_code}")
            raise ModelError(
                "Failed to communicate with the model",
                provider=provider,
                status_code=err.response.status_code,
            ) from err
        except (httpx.HTTPError, ValueError) as err:
            logger.error(f"API Error[{provider}]: {err}")
            raise ModelError(
                f"Failed to communicate with the model: {err}", provider=provider
            ) from err

        content = _PARSERS[provider](data)
        if not isinstance(content, str):
            raise ModelError("Failed to parse response", provider=provider)

        return extract_reasoning(content)
