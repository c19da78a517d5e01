# -*- coding: utf-8 -*-
"""
@Time    : 2025/7/9 00:44
@Author  : QIN2DIM
@GitHub  : https://github.com/QIN2DIM
@Desc    :
"""
from io import BytesIO

from loguru import logger
from telegram import Message, Update
from telegram.constants import ParseMode

from settings import settings

DENIED_TEXT = "⚠️ 您没有权限使用该机器人。\n此机器人仅限于授权的聊天使用。"


async def ensure_chat_allowed(update: Update) -> bool:
    """白名单为空时不做限制"""
    chat = update.effective_chat
    if not settings.whitelist or (chat and chat.id in settings.whitelist):
        return True

    logger.info(f"Rejected chat {chat.id if chat else 'unknown'}: not in whitelist")
    if update.effective_message:
        await update.effective_message.reply_text(DENIED_TEXT)
    return False


async def reply_html(message: Message, text: str) -> Message | None:
    """回复 HTML 消息，格式错误时降级为纯文本"""
    try:
        return await message.reply_text(text, parse_mode=ParseMode.HTML)
    except Exception as err:
        logger.error(f"Failed to send HTML message: {err}")

    try:
        return await message.reply_text(text)
    except Exception as e2:
        logger.error(f"Failed to send message: {e2}")
        return None


async def edit_html(message: Message, text: str) -> bool:
    """编辑已发送的消息，格式错误时降级为纯文本"""
    try:
        await message.edit_text(text, parse_mode=ParseMode.HTML)
        return True
    except Exception as err:
        logger.error(f"Failed to edit HTML message: {err}")

    try:
        await message.edit_text(text)
        return True
    except Exception as e2:
        logger.error(f"Failed to edit message: {e2}")
        return False


async def reply_jsonl(message: Message, content: str, filename: str, caption: str = "") -> bool:
    if not content:
        await message.reply_text("📭 Nothing to export yet")
        return False

    document = BytesIO(content.encode("utf-8"))
    await message.reply_document(document=document, filename=filename, caption=caption or None)
    logger.debug(f"Sent export {filename} ({len(content)} chars)")
    return True
