# -*- coding: utf-8 -*-
"""
@Time    : 2025/7/12 10:00
@Author  : QIN2DIM
@GitHub  : https://github.com/QIN2DIM
@Desc    : Process-wide orchestrator wiring for the bot.
"""
from loguru import logger

from crosstalk import ConversationLog, DatabaseStore, Orchestrator
from gateways import ModelGateway, TranslationGateway
from settings import settings

_orchestrator: Orchestrator | None = None


def build_orchestrator() -> Orchestrator:
    store = DatabaseStore(settings.DATABASE_URL)
    store.init_database()

    return Orchestrator(
        log=ConversationLog(store),
        translation_gateway=TranslationGateway(timeout=settings.HTTP_REQUEST_TIMEOUT),
        model_gateway=ModelGateway(),
        export_dir=settings.EXPORT_DIR,
    )


def get_orchestrator() -> Orchestrator:
    """首次调用时创建编排器，并从日志恢复当前会话"""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator()
        _orchestrator.resume()
        logger.success(f"Conversation ready: {_orchestrator.log.current_id}")
    return _orchestrator
