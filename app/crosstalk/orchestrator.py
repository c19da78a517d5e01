# -*- coding: utf-8 -*-
"""
@Time    : 2025/7/12 10:00
@Author  : QIN2DIM
@GitHub  : https://github.com/QIN2DIM
@Desc    : Drives one translate -> query -> translate-back round across the three panes.
"""
import asyncio
from pathlib import Path
from typing import Dict, Iterable, Tuple

from loguru import logger

from errors import CrosstalkError, TranslationError
from gateways import ModelGateway, TranslationGateway
from models import (
    LogEntry,
    LogPatch,
    MessageCategory,
    Pane,
    PaneHistories,
    ProviderSettings,
    TRANSLATING_PLACEHOLDER,
    TRANSLATION_FAILED_MARKER,
)

from .conversation_log import ConversationLog
from .routing import replay, to_message

# pane -> (entry as written, index of its message in the pane history, persisted)
PendingEntries = Dict[Pane, Tuple[LogEntry, int, bool]]


class Orchestrator:
    """
    One round per user submission:

    0. pending user messages on the user/model panes, resolved one on the direct pane
    1. direct branch: the untranslated text goes to the model, concurrently with 2-5
    2. translate to the target language, amend the pending messages
    3. query the model with the translation
    4. translate the answer (and the reasoning trace, if any) back to English
    5. model reply on the model and user panes
    6. join the direct branch

    Pane state is only ever derived from log entries through the routing table,
    so ``resume`` rebuilds exactly what a live round produced.
    """

    def __init__(
        self,
        log: ConversationLog,
        translation_gateway: TranslationGateway,
        model_gateway: ModelGateway,
        export_dir: Path | None = None,
    ):
        self.log = log
        self.translation = translation_gateway
        self.model = model_gateway
        self.export_dir = export_dir

        self._histories = PaneHistories()
        self._busy = False

    @property
    def histories(self) -> PaneHistories:
        return self._histories

    @property
    def busy(self) -> bool:
        return self._busy

    async def submit(self, user_text: str, settings: ProviderSettings) -> None:
        """
        Run one full round for ``user_text``.

        Blank input is ignored. Missing model credential or model name raises
        ``ValidationError`` before anything is shown or logged. Every other
        failure ends up as an error message on the panes it touched.
        """
        text = user_text.strip()
        if not text:
            logger.debug("Ignoring blank submission")
            return

        settings.ensure_ready()

        self._busy = True
        try:
            pending: PendingEntries = {
                Pane.USER: self._emit(
                    LogEntry(
                        message_category=MessageCategory.USER,
                        pane=Pane.USER,
                        primary_text=text,
                        translated_text=TRANSLATING_PLACEHOLDER,
                    )
                ),
                Pane.MODEL: self._emit(
                    LogEntry(
                        message_category=MessageCategory.USER,
                        pane=Pane.MODEL,
                        primary_text=text,
                        translated_text=TRANSLATING_PLACEHOLDER,
                    )
                ),
            }
            self._emit(
                LogEntry(message_category=MessageCategory.USER, pane=Pane.DIRECT, primary_text=text)
            )

            direct_round = asyncio.create_task(self._direct_round(text, settings))
            try:
                await self._translated_round(text, settings, pending)
            finally:
                await direct_round
        finally:
            self._busy = False

    def reset(self) -> str:
        """
        Export the current conversation, then start a new one with empty panes.

        Raises ``PersistenceError`` (leaving everything untouched) if the export
        cannot be written.
        """
        finished_id = self.log.current_id
        if self.export_dir:
            self.log.write_export(finished_id, self.export_dir)
        else:
            logger.warning(f"No export directory configured, {finished_id} was not exported")

        new_id = self.log.start_new()
        self._histories = PaneHistories()
        logger.info(f"Reset conversation {finished_id} -> {new_id}")
        return new_id

    def resume(self, conversation_id: str | None = None) -> PaneHistories:
        """Replay a conversation's log into pane histories; the current one is installed."""
        conversation_id = conversation_id or self.log.current_id
        histories = replay(self.log.entries_for(conversation_id))

        if conversation_id == self.log.current_id:
            self._histories = histories
            logger.info(
                f"Resumed {conversation_id}: "
                f"user={len(histories.user)} model={len(histories.model)} "
                f"direct={len(histories.direct)}"
            )
        return histories

    def load(self, conversation_id: str) -> PaneHistories:
        self.log.switch_to(conversation_id)
        return self.resume(conversation_id)

    # ------------------------------------------------------------ branches

    async def _translated_round(
        self, text: str, settings: ProviderSettings, pending: PendingEntries
    ) -> None:
        try:
            await self._run_translated(text, settings, pending)
        except CrosstalkError as err:
            logger.error(f"Translated round failed: {err}")
            self._fail_translated(pending, err)
        except Exception as err:
            logger.exception(f"Translated round crashed: {err}")
            self._fail_translated(pending, err)

    async def _run_translated(
        self, text: str, settings: ProviderSettings, pending: PendingEntries
    ) -> None:
        target = settings.target_language
        credential = settings.translation_api_key

        outbound = await self.translation.translate(text, target, credential)
        for entry, index, persisted in pending.values():
            self._amend(
                entry, index, LogPatch(translated_text=outbound.translated_text), persisted
            )
        logger.debug(f"Translated to {target}: {outbound.translated_text[:80]}")

        reply = await self.model.query(outbound.translated_text, settings)

        answer, trace = await asyncio.gather(
            self.translation.translate_back(reply.answer, target, credential),
            self._translate_trace_back(reply.reasoning_trace, target, credential),
            return_exceptions=True,
        )
        for result in (answer, trace):
            if isinstance(result, BaseException):
                raise result

        self._emit(
            LogEntry(
                message_category=MessageCategory.MODEL,
                pane=Pane.MODEL,
                primary_text=answer.translated_text,
                translated_text=reply.answer,
                reasoning_trace=reply.reasoning_trace,
                translated_reasoning_trace=reply.reasoning_trace,
            )
        )
        self._emit(
            LogEntry(
                message_category=MessageCategory.MODEL,
                pane=Pane.USER,
                primary_text=answer.translated_text,
                translated_text=reply.answer,
                reasoning_trace=reply.reasoning_trace,
                translated_reasoning_trace=trace,
            )
        )

    async def _translate_trace_back(
        self, trace: str | None, source_language: str, credential: str
    ) -> str | None:
        if not trace:
            return None
        try:
            result = await self.translation.translate_back(trace, source_language, credential)
        except TranslationError as err:
            logger.warning(f"Reasoning trace stays untranslated: {err}")
            return None
        return result.translated_text

    async def _direct_round(self, text: str, settings: ProviderSettings) -> None:
        try:
            reply = await self.model.query(text, settings)
        except CrosstalkError as err:
            logger.error(f"Direct round failed: {err}")
            self._emit_errors((Pane.DIRECT,), err)
            return
        except Exception as err:
            logger.exception(f"Direct round crashed: {err}")
            self._emit_errors((Pane.DIRECT,), err)
            return

        self._emit(
            LogEntry(
                message_category=MessageCategory.MODEL,
                pane=Pane.DIRECT,
                primary_text=reply.answer,
                reasoning_trace=reply.reasoning_trace,
            )
        )

    # ------------------------------------------------------------- writes

    def _emit(self, entry: LogEntry) -> Tuple[LogEntry, int, bool]:
        persisted = self.log.append(entry)
        messages = self._histories.for_pane(entry.pane)
        messages.append(to_message(entry))
        return entry, len(messages) - 1, persisted

    def _amend(self, entry: LogEntry, index: int, patch: LogPatch, persisted: bool) -> LogEntry:
        amended = entry.model_copy(update=patch.model_dump(exclude_none=True))
        if persisted:
            self.log.amend_last(entry.message_category, entry.pane, patch)
        else:
            # The newest matching entry on disk belongs to an earlier round
            logger.warning(f"Skipping log amendment for unlogged {entry.pane.value} entry")
        self._histories.for_pane(entry.pane)[index] = to_message(amended)
        return amended

    def _fail_translated(self, pending: PendingEntries, err: Exception) -> None:
        for pane, (entry, index, persisted) in pending.items():
            if self._histories.for_pane(pane)[index].pending:
                self._amend(
                    entry, index, LogPatch(translated_text=TRANSLATION_FAILED_MARKER), persisted
                )
        self._emit_errors((Pane.USER, Pane.MODEL), err)

    def _emit_errors(self, panes: Iterable[Pane], err: Exception) -> None:
        error_text = f"Error: {str(err) or 'Something went wrong'}"
        for pane in panes:
            self._emit(
                LogEntry(
                    message_category=MessageCategory.ERROR,
                    pane=pane,
                    primary_text=error_text,
                    translated_text=error_text,
                )
            )
