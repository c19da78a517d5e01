# -*- coding: utf-8 -*-
"""
@Time    : 2025/7/9 00:44
@Author  : QIN2DIM
@GitHub  : https://github.com/QIN2DIM
@Desc    : Conversation management commands
"""
from html import escape

from loguru import logger
from telegram import Update
from telegram.ext import ContextTypes

from errors import PersistenceError
from languages import get_language_name
from models import Pane
from mybot.common import ensure_chat_allowed, reply_html, reply_jsonl
from mybot.services.conversation_service import get_orchestrator
from mybot.services.message_formatter import PaneFormatter
from settings import settings

START_TPL = """
👋 Hi, I am @{username}.

Write to me in English. Every message goes two ways:
• translated to <b>{language}</b>, answered by the model, and translated back
• sent to the model as-is, so you can compare both answers

Use /help to see the commands.
"""

HELP_TEXT = """
<b>Commands</b>
/new - export this conversation and start a new one
/export - download the current conversation (.jsonl)
/export_all - download every conversation (.jsonl)
/history - list known conversations
/resume [id] - switch to a conversation (default: the most recent previous one)
/settings - show the provider, model and language in use
"""


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Send a message when the command /start is issued."""
    if not await ensure_chat_allowed(update):
        return
    answer_text = START_TPL.format(
        username=context.bot.username,
        language=escape(get_language_name(settings.TARGET_LANGUAGE)),
    )
    await reply_html(update.effective_message, answer_text.strip())


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await ensure_chat_allowed(update):
        return
    await reply_html(update.effective_message, HELP_TEXT.strip())


async def new_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await ensure_chat_allowed(update):
        return

    message = update.effective_message
    orchestrator = get_orchestrator()
    if orchestrator.busy:
        await message.reply_text("⏳ Please wait for the current message to finish first.")
        return

    finished_id = orchestrator.log.current_id
    try:
        new_id = orchestrator.reset()
    except PersistenceError as err:
        logger.error(f"Reset aborted: {err}")
        await message.reply_text("❌ Could not export the current conversation, nothing was reset.")
        return

    content = orchestrator.log.export_json_lines(finished_id)
    if content:
        await reply_jsonl(message, content, f"{finished_id}.jsonl", caption="📦 Previous conversation")
    await reply_html(message, f"🆕 Started <code>{escape(new_id)}</code>")


async def export_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await ensure_chat_allowed(update):
        return
    log = get_orchestrator().log
    conversation_id = log.current_id
    await reply_jsonl(
        update.effective_message, log.export_json_lines(conversation_id), f"{conversation_id}.jsonl"
    )


async def export_all_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await ensure_chat_allowed(update):
        return
    log = get_orchestrator().log
    await reply_jsonl(
        update.effective_message, log.export_all_json_lines(), "crosstalk-all-conversations.jsonl"
    )


async def history_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await ensure_chat_allowed(update):
        return
    log = get_orchestrator().log
    await reply_html(
        update.effective_message, PaneFormatter.format_history_list(log.all_ids(), log.current_id)
    )


async def resume_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await ensure_chat_allowed(update):
        return

    message = update.effective_message
    orchestrator = get_orchestrator()
    if orchestrator.busy:
        await message.reply_text("⏳ Please wait for the current message to finish first.")
        return

    conversation_id = context.args[0] if context.args else orchestrator.log.most_recent_id()
    if not conversation_id:
        await message.reply_text("📭 There is no previous conversation to resume.")
        return

    try:
        histories = orchestrator.load(conversation_id)
    except KeyError:
        await reply_html(message, f"❌ Unknown conversation <code>{escape(conversation_id)}</code>")
        return

    summary = PaneFormatter.format_round(
        histories, {pane: 0 for pane in Pane}, settings.TARGET_LANGUAGE
    )
    await reply_html(message, f"🔁 Resumed <code>{escape(conversation_id)}</code>\n\n{summary}")


async def settings_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not await ensure_chat_allowed(update):
        return
    await reply_html(
        update.effective_message, PaneFormatter.format_settings(settings.get_provider_settings())
    )
