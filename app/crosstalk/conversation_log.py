# -*- coding: utf-8 -*-
"""
@Time    : 2025/7/14 00:45
@Author  : QIN2DIM
@GitHub  : https://github.com/QIN2DIM
@Desc    : Append-only conversation log on top of a key/value store
"""
import json
from datetime import datetime, UTC
from pathlib import Path
from typing import List

from loguru import logger

from errors import PersistenceError
from models import LogEntry, LogPatch, MessageCategory, Pane
from utils import generate_conversation_id

from .storage import KeyValueStore

CURRENT_LOG_KEY = "crosstalk_current_log"
ALL_LOGS_KEY = "crosstalk_all_logs"
LOG_KEY_PREFIX = "crosstalk_log_"


def _now() -> datetime:
    return datetime.now(UTC)


class ConversationLog:
    """
    Durable, replayable record of every message emitted on every pane.

    Exactly one conversation is current at a time. The current id is derived
    from the store on first access (or generated and persisted when the store
    has none) and is only ever replaced as a whole by ``start_new`` or
    ``switch_to``.

    Writes never yield to the event loop, so a concurrent coroutine can never
    observe a half-written append or amendment.
    """

    def __init__(self, store: KeyValueStore):
        self._store = store
        self._current_id: str | None = None

    # ---------------------------------------------------------------- state

    @property
    def current_id(self) -> str:
        if self._current_id:
            return self._current_id

        try:
            self._current_id = self._store.get(CURRENT_LOG_KEY)
        except PersistenceError as err:
            logger.error(f"Failed to read the current conversation id: {err}")

        if not self._current_id:
            self._current_id = generate_conversation_id(taken=self.all_ids())
            self._persist_current()
        return self._current_id

    def start_new(self) -> str:
        new_id = generate_conversation_id(taken=self.all_ids())
        self._current_id = new_id
        self._persist_current()
        try:
            self._save(new_id, [])
        except PersistenceError as err:
            logger.error(f"Failed to initialize log {new_id}: {err}")
        self._register(new_id)
        logger.info(f"Started conversation {new_id}")
        return new_id

    def switch_to(self, conversation_id: str) -> None:
        if conversation_id not in self.all_ids():
            raise KeyError(conversation_id)
        self._current_id = conversation_id
        self._persist_current()
        logger.info(f"Switched to conversation {conversation_id}")

    def all_ids(self) -> List[str]:
        try:
            raw = self._store.get(ALL_LOGS_KEY)
            return json.loads(raw) if raw else []
        except (PersistenceError, ValueError) as err:
            logger.error(f"Error retrieving all log IDs: {err}")
            return []

    def most_recent_id(self) -> str | None:
        """Most recently registered conversation other than the current one."""
        current = self.current_id
        previous = [i for i in self.all_ids() if i != current]
        return previous[-1] if previous else None

    # --------------------------------------------------------------- writes

    def append(self, entry: LogEntry) -> bool:
        conversation_id = self.current_id
        record = entry.model_copy(update={"created_at": _now(), "updated_at": None})
        try:
            entries = self._load(conversation_id)
            entries.append(record)
            self._save(conversation_id, entries)
        except PersistenceError as err:
            logger.error(f"Error logging message: {err}")
            return False

        self._register(conversation_id)
        return True

    def amend_last(self, category: MessageCategory, pane: Pane, patch: LogPatch) -> bool:
        """
        Merge ``patch`` into the newest entry of the current conversation
        matching ``(category, pane)``.

        Returns False when there is nothing to amend or the store failed.
        """
        conversation_id = self.current_id
        try:
            entries = self._load(conversation_id)
        except PersistenceError as err:
            logger.error(f"Error amending message: {err}")
            return False

        for i in range(len(entries) - 1, -1, -1):
            if entries[i].message_category == category and entries[i].pane == pane:
                changes = patch.model_dump(exclude_none=True)
                entries[i] = entries[i].model_copy(update={**changes, "updated_at": _now()})
                break
        else:
            logger.debug(f"Nothing to amend for {category.value}/{pane.value}")
            return False

        try:
            self._save(conversation_id, entries)
        except PersistenceError as err:
            logger.error(f"Error amending message: {err}")
            return False
        return True

    # ---------------------------------------------------------------- reads

    def entries_for(self, conversation_id: str) -> List[LogEntry]:
        try:
            return self._load(conversation_id)
        except PersistenceError as err:
            logger.error(f"Error retrieving log {conversation_id}: {err}")
            return []

    def export_json_lines(self, conversation_id: str) -> str:
        return "".join(
            json.dumps(entry.dumps(), ensure_ascii=False) + "\n"
            for entry in self.entries_for(conversation_id)
        )

    def export_all_json_lines(self) -> str:
        lines = []
        for conversation_id in self.all_ids():
            for entry in self.entries_for(conversation_id):
                payload = entry.dumps(conversationId=conversation_id)
                lines.append(json.dumps(payload, ensure_ascii=False) + "\n")
        return "".join(lines)

    def write_export(self, conversation_id: str, directory: Path) -> Path | None:
        """
        Write ``<directory>/<conversation_id>.jsonl``.

        Returns None for an empty conversation. Raises ``PersistenceError``
        when the file cannot be written.
        """
        content = self.export_json_lines(conversation_id)
        if not content:
            return None

        fp = Path(directory).joinpath(f"{conversation_id}.jsonl")
        try:
            fp.parent.mkdir(parents=True, exist_ok=True)
            fp.write_text(content, encoding="utf-8")
        except OSError as err:
            raise PersistenceError(f"Failed to export {conversation_id}: {err}") from err

        logger.success(f"Exported conversation {conversation_id} -> {fp}")
        return fp

    # ------------------------------------------------------------- internal

    def _load(self, conversation_id: str) -> List[LogEntry]:
        raw = self._store.get(f"{LOG_KEY_PREFIX}{conversation_id}")
        if not raw:
            return []
        try:
            return [LogEntry.model_validate(item) for item in json.loads(raw)]
        except ValueError as err:
            raise PersistenceError(f"Corrupted log {conversation_id}: {err}") from err

    def _save(self, conversation_id: str, entries: List[LogEntry]) -> None:
        payload = json.dumps([entry.dumps() for entry in entries], ensure_ascii=False)
        self._store.set(f"{LOG_KEY_PREFIX}{conversation_id}", payload)

    def _persist_current(self) -> None:
        try:
            self._store.set(CURRENT_LOG_KEY, self._current_id)
        except PersistenceError as err:
            logger.error(f"Failed to persist the current conversation id: {err}")

    def _register(self, conversation_id: str) -> None:
        known = self.all_ids()
        if conversation_id in known:
            return
        known.append(conversation_id)
        try:
            self._store.set(ALL_LOGS_KEY, json.dumps(known))
        except PersistenceError as err:
            logger.error(f"Failed to register conversation {conversation_id}: {err}")
