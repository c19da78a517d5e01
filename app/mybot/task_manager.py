# -*- coding: utf-8 -*-
"""
Background execution for long-running bot handlers
"""
import asyncio
import functools
from contextlib import suppress
from typing import Callable, Set

from loguru import logger

# Strong references so running handler tasks are not garbage collected
_active_tasks: Set[asyncio.Task] = set()


def get_active_tasks_count() -> int:
    return len(_active_tasks)


def non_blocking_handler(handler_name: str = "unknown"):
    """
    Run the decorated handler as a background task so a slow round does not
    hold up /export, /history and other commands.

    Usage:
        @non_blocking_handler("handle_message")
        async def handle_message(update, context):
            ...
    """

    def decorator(handler_func: Callable):
        @functools.wraps(handler_func)
        async def wrapper(update, context):
            task = asyncio.create_task(
                _execute_handler_task(handler_func, update, context, handler_name)
            )
            _active_tasks.add(task)
            task.add_done_callback(_active_tasks.discard)
            logger.debug(f"Started {handler_name} task (Active tasks: {len(_active_tasks)})")

        return wrapper

    return decorator


async def _execute_handler_task(handler_func: Callable, update, context, handler_name: str):
    try:
        await handler_func(update, context)
        logger.debug(f"Completed {handler_name} task")
    except Exception as e:
        logger.exception(f"Error in {handler_name} handler: {e}")

        with suppress(Exception):
            if update and update.effective_message:
                await update.effective_message.reply_text("❌ 处理请求时发生错误，请稍后重试")


async def wait_for_all_tasks(timeout: float = 30.0) -> bool:
    """
    Wait for in-flight rounds before shutdown.

    Returns:
        True if all tasks completed, False if timeout occurred
    """
    if not _active_tasks:
        return True

    logger.info(f"Waiting for {len(_active_tasks)} active tasks to complete...")
    try:
        await asyncio.wait_for(
            asyncio.gather(*_active_tasks, return_exceptions=True), timeout=timeout
        )
        return True
    except asyncio.TimeoutError:
        logger.warning(f"Timeout waiting for tasks, {len(_active_tasks)} still running")
        return False
