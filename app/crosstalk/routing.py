# -*- coding: utf-8 -*-
"""
Routing table from (message category, pane) to the message shown on that pane.

Both the live orchestrator and ``resume`` build pane messages through
``to_message``, so replaying a log reproduces the live pane state exactly.
"""
from typing import Callable, Dict, Iterable, Tuple

from models import LogEntry, Message, MessageCategory, Pane, PaneHistories, Role


def _text_only(entry: LogEntry) -> Message:
    return Message(role=Role.USER, primary_text=entry.primary_text)


def _bilingual_user(entry: LogEntry) -> Message:
    return Message(
        role=Role.USER, primary_text=entry.primary_text, translated_text=entry.translated_text
    )


def _model_on_user_pane(entry: LogEntry) -> Message:
    return Message(
        role=Role.MODEL,
        primary_text=entry.primary_text,
        translated_text=entry.translated_text,
        reasoning_trace=entry.reasoning_trace,
        translated_reasoning_trace=entry.translated_reasoning_trace,
    )


def _model_on_model_pane(entry: LogEntry) -> Message:
    # The model pane always shows the trace in the language the model wrote it in
    return Message(
        role=Role.MODEL,
        primary_text=entry.primary_text,
        translated_text=entry.translated_text,
        reasoning_trace=entry.reasoning_trace,
        translated_reasoning_trace=entry.reasoning_trace,
    )


def _model_on_direct_pane(entry: LogEntry) -> Message:
    return Message(
        role=Role.MODEL, primary_text=entry.primary_text, reasoning_trace=entry.reasoning_trace
    )


def _error(entry: LogEntry) -> Message:
    return Message(
        role=Role.MODEL, primary_text=entry.primary_text, translated_text=entry.translated_text
    )


ROUTES: Dict[Tuple[MessageCategory, Pane], Callable[[LogEntry], Message]] = {
    (MessageCategory.USER, Pane.USER): _bilingual_user,
    (MessageCategory.USER, Pane.MODEL): _bilingual_user,
    (MessageCategory.USER, Pane.DIRECT): _text_only,
    (MessageCategory.MODEL, Pane.USER): _model_on_user_pane,
    (MessageCategory.MODEL, Pane.MODEL): _model_on_model_pane,
    (MessageCategory.MODEL, Pane.DIRECT): _model_on_direct_pane,
    (MessageCategory.ERROR, Pane.USER): _error,
    (MessageCategory.ERROR, Pane.MODEL): _error,
    (MessageCategory.ERROR, Pane.DIRECT): _error,
}


def to_message(entry: LogEntry) -> Message:
    return ROUTES[(entry.message_category, entry.pane)](entry)


def replay(entries: Iterable[LogEntry]) -> PaneHistories:
    histories = PaneHistories()
    for entry in entries:
        histories.for_pane(entry.pane).append(to_message(entry))
    return histories
