# -*- coding: utf-8 -*-
"""
@Time    : 2025/7/7 05:40
@Author  : QIN2DIM
@GitHub  : https://github.com/QIN2DIM
@Desc    :
"""
from loguru import logger
from telegram import Update, BotCommand
from telegram.ext import CommandHandler, MessageHandler, filters

from languages import get_language_name
from mybot.handlers import (
    start_command,
    help_command,
    new_command,
    export_command,
    export_all_command,
    history_command,
    resume_command,
    settings_command,
    handle_message,
)
from mybot.services.conversation_service import get_orchestrator
from mybot.task_manager import wait_for_all_tasks
from settings import settings, LOG_DIR
from utils import init_log

init_log(
    runtime=LOG_DIR.joinpath("runtime.log"),
    error=LOG_DIR.joinpath("error.log"),
    serialize=LOG_DIR.joinpath("serialize.log"),
)


async def setup_bot_commands(application):
    """设置机器人的命令菜单"""
    commands = [
        BotCommand("new", "Export this conversation and start a new one"),
        BotCommand("export", "Download the current conversation"),
        BotCommand("export_all", "Download every conversation"),
        BotCommand("history", "List known conversations"),
        BotCommand("resume", "Switch to a previous conversation"),
        BotCommand("settings", "Show the provider, model and language"),
    ]

    try:
        await application.bot.set_my_commands(commands)
        logger.success(f"已设置机器人命令菜单: {[f'/{cmd.command}' for cmd in commands]}")
    except Exception as e:
        logger.error(f"设置机器人命令菜单失败: {e}")


async def shutdown_tasks(application):
    await wait_for_all_tasks()


def main() -> None:
    """Start the bot."""
    provider = settings.get_provider_settings()
    logger.success(
        f"Loading settings: provider={provider.provider} model={provider.model_name} "
        f"target={get_language_name(provider.target_language)} "
        f"translation={'google' if provider.translation_api_key else 'placeholder'}"
    )
    if not provider.api_key:
        logger.warning("MODEL_API_KEY is empty, every message will be rejected until it is set")

    # Restore the current conversation before the first update arrives
    get_orchestrator()

    application = settings.get_default_application()
    application.post_init = setup_bot_commands
    application.post_shutdown = shutdown_tasks

    application.add_handler(CommandHandler("start", start_command))
    application.add_handler(CommandHandler("help", help_command))
    application.add_handler(CommandHandler("new", new_command))
    application.add_handler(CommandHandler("export", export_command))
    application.add_handler(CommandHandler("export_all", export_all_command))
    application.add_handler(CommandHandler("history", history_command))
    application.add_handler(CommandHandler("resume", resume_command))
    application.add_handler(CommandHandler("settings", settings_command))

    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_message))

    application.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    main()
