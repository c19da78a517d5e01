# -*- coding: utf-8 -*-
"""
@Time    : 2025/7/8 12:34
@Author  : QIN2DIM
@GitHub  : https://github.com/QIN2DIM
@Desc    : Data model shared by the gateways, the conversation log and the orchestrator.
"""
from datetime import datetime
from enum import Enum
from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from errors import ValidationError

PROVIDER_TYPE = Literal["openai", "anthropic", "custom"]

# Shown on the user and model panes until the outbound translation resolves
TRANSLATING_PLACEHOLDER = "Translating..."
TRANSLATION_FAILED_MARKER = "Translation failed"


class Role(str, Enum):
    USER = "user"
    MODEL = "model"


class Pane(str, Enum):
    USER = "user"
    """
    English-displayed pane, the user's own side of the conversation
    """

    MODEL = "model"
    """
    Target-language pane, round-tripped through translation
    """

    DIRECT = "direct"
    """
    Model queried with the untranslated input
    """


class MessageCategory(str, Enum):
    USER = "user"
    MODEL = "model"
    ERROR = "error"


class Message(BaseModel):
    role: Role
    primary_text: str = ""
    translated_text: str | None = None
    reasoning_trace: str | None = None
    translated_reasoning_trace: str | None = None

    @property
    def pending(self) -> bool:
        return self.translated_text == TRANSLATING_PLACEHOLDER


class PaneHistories(BaseModel):
    user: List[Message] = Field(default_factory=list)
    model: List[Message] = Field(default_factory=list)
    direct: List[Message] = Field(default_factory=list)

    def for_pane(self, pane: Pane) -> List[Message]:
        return getattr(self, pane.value)


class LogEntry(BaseModel):
    """
    One durable record of a pane's message state.

    Serialized with camelCase keys, which is the on-disk and export format.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    message_category: MessageCategory
    pane: Pane
    primary_text: str = ""
    translated_text: str | None = None
    reasoning_trace: str | None = None
    translated_reasoning_trace: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def dumps(self, **extra) -> dict:
        _payload = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        _payload.update(extra)
        return _payload


class LogPatch(BaseModel):
    """Fields merged into an existing entry by ``ConversationLog.amend_last``."""

    primary_text: str | None = None
    translated_text: str | None = None
    reasoning_trace: str | None = None
    translated_reasoning_trace: str | None = None


class TranslationResult(BaseModel):
    translated_text: str
    detected_source_language: str = "en"


class ModelReply(BaseModel):
    answer: str
    reasoning_trace: str | None = None


class ProviderSettings(BaseModel):
    """Validated runtime configuration handed to the orchestrator for each round."""

    provider: PROVIDER_TYPE = "openai"
    model_name: str = ""
    api_host: str = "api.openai.com"
    api_key: str = ""
    target_language: str = "es"
    translation_api_key: str = ""
    temperature: float = Field(default=0.7, ge=0, le=1)
    max_tokens: int = Field(default=1000, ge=100, le=16000)
    timeout: float = 75.0

    def ensure_ready(self) -> None:
        if not self.api_key.strip():
            raise ValidationError("API key is required")
        if not self.model_name.strip():
            raise ValidationError("Model name is required")
