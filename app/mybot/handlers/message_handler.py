# -*- coding: utf-8 -*-
"""
@Time    : 2025/7/12 10:00
@Author  : QIN2DIM
@GitHub  : https://github.com/QIN2DIM
@Desc    : Turns an incoming text message into one conversation round.
"""
from html import escape

from loguru import logger
from telegram import Update
from telegram.ext import ContextTypes

from errors import ValidationError
from models import Pane
from mybot.common import ensure_chat_allowed, reply_html, edit_html
from mybot.services.conversation_service import get_orchestrator
from mybot.services.message_formatter import PaneFormatter
from mybot.task_manager import non_blocking_handler
from settings import settings

PENDING_TEXT = "⏳ Translating and processing..."
BUSY_TEXT = "⏳ The previous message is still being processed, please wait for it to finish."


@non_blocking_handler("handle_message")
async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    message = update.effective_message
    if not message or not message.text or not message.text.strip():
        return

    if not await ensure_chat_allowed(update):
        return

    orchestrator = get_orchestrator()
    provider = settings.get_provider_settings()

    # Visible immediately, before any translation or model call
    placeholder = await reply_html(message, PENDING_TEXT)

    # One round at a time: submit() flips busy before its first await
    if orchestrator.busy:
        if placeholder:
            await edit_html(placeholder, BUSY_TEXT)
        return

    offsets = {pane: len(orchestrator.histories.for_pane(pane)) for pane in Pane}
    try:
        await orchestrator.submit(message.text, provider)
    except ValidationError as err:
        logger.warning(f"Round rejected: {err}")
        result_text = f"⚠️ {escape(str(err))}. Please check the bot settings (/settings)."
    else:
        result_text = PaneFormatter.format_round(
            orchestrator.histories, offsets, provider.target_language
        )

    if not placeholder or not await edit_html(placeholder, result_text):
        await reply_html(message, result_text)
