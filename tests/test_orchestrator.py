# -*- coding: utf-8 -*-
"""
@Time    : 2025/7/12 10:00
@Author  : QIN2DIM
@GitHub  : https://github.com/QIN2DIM
@Desc    : Round, reset and resume behaviour of the orchestrator
"""
import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio

from crosstalk import ConversationLog, MemoryStore, Orchestrator
from crosstalk.conversation_log import LOG_KEY_PREFIX
from errors import ModelError, PersistenceError, TranslationError, ValidationError
from gateways import TranslationGateway, extract_reasoning
from models import (
    MessageCategory,
    ModelReply,
    Pane,
    ProviderSettings,
    Role,
    TRANSLATION_FAILED_MARKER,
    TranslationResult,
)


def _provider(**overrides) -> ProviderSettings:
    options = {"api_key": "sk-test", "model_name": "gpt-4o", "target_language": "es"}
    options.update(overrides)
    return ProviderSettings(**options)


def _echo_model(*, translated: str = "Hola!", direct: str = "Hi there!"):
    """Model double answering depending on which branch asked."""

    async def _query(text: str, settings: ProviderSettings) -> ModelReply:
        return ModelReply(answer=translated if text.startswith("[") else direct)

    return AsyncMock(query=AsyncMock(side_effect=_query))


class TestOrchestratorRound:
    @pytest_asyncio.fixture
    async def log(self):
        return ConversationLog(MemoryStore())

    @pytest_asyncio.fixture
    async def model(self):
        return _echo_model()

    @pytest_asyncio.fixture
    async def orchestrator(self, log, model):
        # No translation credential: the gateway answers with placeholder translations
        return Orchestrator(log, TranslationGateway(), model)

    @pytest.mark.asyncio
    async def test_full_round_populates_all_panes(self, orchestrator, model):
        await orchestrator.submit("Hello", _provider())

        user, model_pane, direct = (
            orchestrator.histories.user,
            orchestrator.histories.model,
            orchestrator.histories.direct,
        )

        assert [(m.role, m.primary_text, m.translated_text) for m in user] == [
            (Role.USER, "Hello", "[es] Hello"),
            (Role.MODEL, "[Translated from es] Hola!", "Hola!"),
        ]
        assert [(m.role, m.primary_text, m.translated_text) for m in model_pane] == [
            (Role.USER, "Hello", "[es] Hello"),
            (Role.MODEL, "[Translated from es] Hola!", "Hola!"),
        ]
        assert [(m.role, m.primary_text) for m in direct] == [
            (Role.USER, "Hello"),
            (Role.MODEL, "Hi there!"),
        ]
        assert direct[0].translated_text is None

        asked = sorted(call.args[0] for call in model.query.await_args_list)
        assert asked == ["Hello", "[es] Hello"]
        assert orchestrator.busy is False

    @pytest.mark.asyncio
    async def test_input_is_trimmed(self, orchestrator, model):
        await orchestrator.submit("  Hello \n", _provider())

        assert orchestrator.histories.direct[0].primary_text == "Hello"
        assert sorted(c.args[0] for c in model.query.await_args_list) == ["Hello", "[es] Hello"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    async def test_blank_input_is_a_no_op(self, orchestrator, log, model, text):
        await orchestrator.submit(text, _provider())

        assert orchestrator.histories.user == []
        assert orchestrator.histories.model == []
        assert orchestrator.histories.direct == []
        assert log.entries_for(log.current_id) == []
        model.query.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides, reason",
        [({"api_key": ""}, "API key is required"), ({"model_name": " "}, "Model name is required")],
    )
    async def test_missing_settings_reject_before_anything_happens(
        self, orchestrator, log, model, overrides, reason
    ):
        with pytest.raises(ValidationError, match=reason):
            await orchestrator.submit("Hello", _provider(**overrides))

        assert orchestrator.histories.user == []
        assert log.entries_for(log.current_id) == []
        model.query.assert_not_awaited()
        assert orchestrator.busy is False

    @pytest.mark.asyncio
    async def test_pending_user_entry_is_amended_not_duplicated(self, orchestrator, log):
        await orchestrator.submit("Hello", _provider())

        entries = log.entries_for(log.current_id)
        user_entries = [e for e in entries if e.message_category == MessageCategory.USER]

        assert len(entries) == 6
        assert len([e for e in user_entries if e.pane == Pane.USER]) == 1
        assert len([e for e in user_entries if e.pane == Pane.MODEL]) == 1
        for entry in user_entries:
            if entry.pane == Pane.DIRECT:
                assert entry.translated_text is None
                assert entry.updated_at is None
            else:
                assert entry.translated_text == "[es] Hello"
                assert entry.updated_at is not None

    @pytest.mark.asyncio
    async def test_pending_messages_visible_before_translation_resolves(self, log, model):
        seen = {}
        orchestrator = None

        async def _translate(text, target, credential):
            seen["user"] = list(orchestrator.histories.user)
            seen["direct"] = list(orchestrator.histories.direct)
            seen["busy"] = orchestrator.busy
            return await TranslationGateway().translate(text, target, credential)

        translation = TranslationGateway()
        translation.translate = AsyncMock(side_effect=_translate)
        orchestrator = Orchestrator(log, translation, model)

        await orchestrator.submit("Hello", _provider())

        assert len(seen["user"]) == 1
        assert seen["user"][0].pending is True
        assert seen["direct"][0].primary_text == "Hello"
        assert seen["busy"] is True

    @pytest.mark.asyncio
    async def test_resume_reproduces_live_panes(self, orchestrator):
        await orchestrator.submit("Hello", _provider())
        await orchestrator.submit("How are you?", _provider())
        live = orchestrator.histories.model_copy(deep=True)

        assert orchestrator.resume() == live
        # Replaying twice changes nothing
        assert orchestrator.resume() == live

    @pytest.mark.asyncio
    async def test_resume_reproduces_failed_rounds(self, log, model):
        translation = TranslationGateway()
        translation.translate = AsyncMock(side_effect=TranslationError("Translation failed: HTTP 403"))
        orchestrator = Orchestrator(log, translation, model)

        await orchestrator.submit("Hello", _provider())
        live = orchestrator.histories.model_copy(deep=True)

        assert Orchestrator(log, TranslationGateway(), model).resume() == live

    @pytest.mark.asyncio
    async def test_export_lists_every_entry(self, orchestrator, log):
        await orchestrator.submit("Hello", _provider())

        lines = log.export_json_lines(log.current_id).splitlines()
        records = [json.loads(line) for line in lines]

        assert len(records) == len(log.entries_for(log.current_id))
        assert {(r["messageCategory"], r["pane"]) for r in records} == {
            ("user", "user"),
            ("user", "model"),
            ("user", "direct"),
            ("model", "model"),
            ("model", "user"),
            ("model", "direct"),
        }


class TestBranchIndependence:
    @pytest_asyncio.fixture
    async def log(self):
        return ConversationLog(MemoryStore())

    @pytest.mark.asyncio
    async def test_direct_failure_leaves_translated_branch_intact(self, log):
        async def _query(text, settings):
            if text == "Hello":
                raise ModelError("Failed to communicate with the model", status_code=500)
            return ModelReply(answer="Hola!")

        orchestrator = Orchestrator(log, TranslationGateway(), AsyncMock(query=AsyncMock(side_effect=_query)))
        await orchestrator.submit("Hello", _provider())

        assert orchestrator.histories.user[-1].role == Role.MODEL
        assert orchestrator.histories.user[-1].translated_text == "Hola!"
        assert orchestrator.histories.model[-1].translated_text == "Hola!"
        assert orchestrator.histories.direct[-1].primary_text == (
            "Error: Failed to communicate with the model (HTTP 500)"
        )
        errors = [e for e in log.entries_for(log.current_id) if e.message_category == MessageCategory.ERROR]
        assert [e.pane for e in errors] == [Pane.DIRECT]

    @pytest.mark.asyncio
    async def test_translation_failure_leaves_direct_branch_intact(self, log):
        model = _echo_model()
        translation = TranslationGateway()
        translation.translate = AsyncMock(side_effect=TranslationError("Translation failed: HTTP 403"))
        orchestrator = Orchestrator(log, translation, model)

        await orchestrator.submit("Hello", _provider())

        for pane in (orchestrator.histories.user, orchestrator.histories.model):
            assert pane[0].translated_text == TRANSLATION_FAILED_MARKER
            assert pane[-1].primary_text == "Error: Translation failed: HTTP 403"
            assert pane[-1].role == Role.MODEL
        assert orchestrator.histories.direct[-1].primary_text == "Hi there!"
        # The translated branch never reached the model
        model.query.assert_awaited_once()
        assert model.query.await_args.args[0] == "Hello"

        amended = [
            e
            for e in log.entries_for(log.current_id)
            if e.message_category == MessageCategory.USER and e.pane != Pane.DIRECT
        ]
        assert [e.translated_text for e in amended] == [TRANSLATION_FAILED_MARKER] * 2

    @pytest.mark.asyncio
    async def test_model_failure_after_translation_keeps_translation(self, log):
        async def _query(text, settings):
            if text.startswith("["):
                raise ModelError("Failed to parse response", provider="openai")
            return ModelReply(answer="Hi there!")

        orchestrator = Orchestrator(log, TranslationGateway(), AsyncMock(query=AsyncMock(side_effect=_query)))
        await orchestrator.submit("Hello", _provider())

        user = orchestrator.histories.user
        assert user[0].translated_text == "[es] Hello"
        assert user[-1].primary_text == "Error: Failed to parse response"
        assert orchestrator.histories.model[-1].primary_text == "Error: Failed to parse response"
        assert orchestrator.histories.direct[-1].primary_text == "Hi there!"

    @pytest.mark.asyncio
    async def test_answer_back_translation_failure_is_an_error(self, log):
        translation = TranslationGateway()
        translation.translate_back = AsyncMock(side_effect=TranslationError("Translation failed: boom"))
        orchestrator = Orchestrator(log, translation, _echo_model())

        await orchestrator.submit("Hello", _provider())

        assert orchestrator.histories.user[0].translated_text == "[es] Hello"
        assert orchestrator.histories.user[-1].primary_text == "Error: Translation failed: boom"
        assert orchestrator.histories.direct[-1].primary_text == "Hi there!"

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_generic_error(self, log):
        translation = TranslationGateway()
        translation.translate = AsyncMock(side_effect=RuntimeError())
        orchestrator = Orchestrator(log, translation, _echo_model())

        await orchestrator.submit("Hello", _provider())

        assert orchestrator.histories.user[-1].primary_text == "Error: Something went wrong"
        assert orchestrator.busy is False

    @pytest.mark.asyncio
    async def test_branches_run_concurrently(self, log):
        direct_started = asyncio.Event()
        translation_started = asyncio.Event()

        async def _translate(text, target, credential):
            translation_started.set()
            await asyncio.wait_for(direct_started.wait(), timeout=1)
            return await TranslationGateway().translate(text, target, credential)

        async def _query(text, settings):
            if text == "Hello":
                direct_started.set()
                await asyncio.wait_for(translation_started.wait(), timeout=1)
                return ModelReply(answer="Hi there!")
            return ModelReply(answer="Hola!")

        translation = TranslationGateway()
        translation.translate = AsyncMock(side_effect=_translate)
        orchestrator = Orchestrator(log, translation, AsyncMock(query=AsyncMock(side_effect=_query)))

        await orchestrator.submit("Hello", _provider())

        assert not [
            e for e in log.entries_for(log.current_id) if e.message_category == MessageCategory.ERROR
        ]
        assert orchestrator.histories.direct[-1].primary_text == "Hi there!"


class TestReasoningTrace:
    @pytest_asyncio.fixture
    async def log(self):
        return ConversationLog(MemoryStore())

    @staticmethod
    def _thinking_model():
        async def _query(text, settings):
            return extract_reasoning("<think>plan the reply</think>Hola!")

        return AsyncMock(query=AsyncMock(side_effect=_query))

    @pytest.mark.asyncio
    async def test_trace_never_leaks_into_answers(self, log):
        orchestrator = Orchestrator(log, TranslationGateway(), self._thinking_model())
        await orchestrator.submit("Hello", _provider())

        histories = orchestrator.histories
        for message in histories.user + histories.model + histories.direct:
            assert "<think>" not in message.primary_text
            assert "plan the reply" not in message.primary_text
            assert "plan the reply" not in (message.translated_text or "")

        user_reply, model_reply, direct_reply = (
            histories.user[-1],
            histories.model[-1],
            histories.direct[-1],
        )
        assert user_reply.reasoning_trace == "plan the reply"
        assert user_reply.translated_reasoning_trace == "[Translated from es] plan the reply"
        # The model pane keeps the trace in the model's own language
        assert model_reply.translated_reasoning_trace == "plan the reply"
        assert direct_reply.reasoning_trace == "plan the reply"
        assert direct_reply.translated_reasoning_trace is None

    @pytest.mark.asyncio
    async def test_trace_translation_failure_is_not_fatal(self, log):
        gateway = TranslationGateway()

        async def _translate_back(text, source, credential):
            if text == "plan the reply":
                raise TranslationError("Translation failed: quota")
            return await gateway.translate_back(text, source, credential)

        translation = TranslationGateway()
        translation.translate_back = AsyncMock(side_effect=_translate_back)
        orchestrator = Orchestrator(log, translation, self._thinking_model())

        await orchestrator.submit("Hello", _provider())

        user_reply = orchestrator.histories.user[-1]
        assert user_reply.role == Role.MODEL
        assert user_reply.primary_text == "[Translated from es] Hola!"
        assert user_reply.reasoning_trace == "plan the reply"
        assert user_reply.translated_reasoning_trace is None

    @pytest.mark.asyncio
    async def test_trace_survives_resume(self, log):
        orchestrator = Orchestrator(log, TranslationGateway(), self._thinking_model())
        await orchestrator.submit("Hello", _provider())
        live = orchestrator.histories.model_copy(deep=True)

        assert orchestrator.resume() == live


class TestConversationLifecycle:
    @pytest_asyncio.fixture
    async def log(self):
        return ConversationLog(MemoryStore())

    @pytest_asyncio.fixture
    async def orchestrator(self, log, tmp_path):
        return Orchestrator(log, TranslationGateway(), _echo_model(), export_dir=tmp_path)

    @pytest.mark.asyncio
    async def test_reset_exports_and_clears(self, orchestrator, log, tmp_path):
        await orchestrator.submit("Hello", _provider())
        finished_id = log.current_id

        new_id = orchestrator.reset()

        assert new_id != finished_id
        assert log.current_id == new_id
        assert orchestrator.histories.user == []
        assert orchestrator.histories.model == []
        assert orchestrator.histories.direct == []
        exported = tmp_path / f"{finished_id}.jsonl"
        assert exported.read_text(encoding="utf-8") == log.export_json_lines(finished_id)
        # The finished conversation stays in the log
        assert len(log.entries_for(finished_id)) == 6

    @pytest.mark.asyncio
    async def test_reset_aborts_when_export_fails(self, orchestrator, log):
        await orchestrator.submit("Hello", _provider())
        finished_id = log.current_id
        before = orchestrator.histories.model_copy(deep=True)

        with patch.object(log, "write_export", side_effect=PersistenceError("read-only")):
            with pytest.raises(PersistenceError):
                orchestrator.reset()

        assert log.current_id == finished_id
        assert orchestrator.histories == before

    @pytest.mark.asyncio
    async def test_load_switches_to_previous_conversation(self, orchestrator, log):
        await orchestrator.submit("Hello", _provider())
        first_id = log.current_id
        first = orchestrator.histories.model_copy(deep=True)
        orchestrator.reset()
        await orchestrator.submit("Second", _provider())

        histories = orchestrator.load(first_id)

        assert log.current_id == first_id
        assert histories == first
        assert orchestrator.histories == first

    @pytest.mark.asyncio
    async def test_resume_other_conversation_does_not_install(self, orchestrator, log):
        await orchestrator.submit("Hello", _provider())
        first_id = log.current_id
        orchestrator.reset()

        histories = orchestrator.resume(first_id)

        assert histories.direct[0].primary_text == "Hello"
        assert orchestrator.histories.direct == []

    @pytest.mark.asyncio
    async def test_new_orchestrator_resumes_current_conversation(self, orchestrator, log):
        await orchestrator.submit("Hello", _provider())
        live = orchestrator.histories.model_copy(deep=True)

        restarted = Orchestrator(log, TranslationGateway(), _echo_model())

        assert restarted.histories.user == []
        assert restarted.resume() == live

    @pytest.mark.asyncio
    async def test_reset_without_export_dir_still_starts_new(self, log):
        orchestrator = Orchestrator(log, TranslationGateway(), _echo_model())
        await orchestrator.submit("Hello", _provider())
        finished_id = log.current_id

        new_id = orchestrator.reset()

        assert new_id != finished_id
        assert orchestrator.histories.direct == []
        assert len(log.entries_for(finished_id)) == 6


class FlakyStore(MemoryStore):
    """Fails the next ``failures`` writes of conversation entries."""

    def __init__(self):
        super().__init__()
        self.failures = 0

    def set(self, key: str, value: str) -> None:
        if self.failures and key.startswith(LOG_KEY_PREFIX):
            self.failures -= 1
            raise PersistenceError(f"database is locked while writing {key}")
        super().set(key, value)


class TestPersistenceFailures:
    @pytest_asyncio.fixture
    async def store(self):
        return FlakyStore()

    @pytest_asyncio.fixture
    async def log(self, store):
        return ConversationLog(store)

    @staticmethod
    def _translations(log, pane: Pane):
        return [
            e.translated_text
            for e in log.entries_for(log.current_id)
            if e.message_category == MessageCategory.USER and e.pane == pane
        ]

    @pytest.mark.asyncio
    async def test_unlogged_pending_entry_never_amends_earlier_round(self, store, log):
        orchestrator = Orchestrator(log, TranslationGateway(), _echo_model())
        await orchestrator.submit("First", _provider())

        # The user-pane stage-0 write of the next round is lost
        store.failures = 1
        await orchestrator.submit("Second", _provider())

        assert self._translations(log, Pane.USER) == ["[es] First"]
        assert self._translations(log, Pane.MODEL) == ["[es] First", "[es] Second"]
        # The live panes still show the whole round
        user = orchestrator.histories.user
        assert (user[2].primary_text, user[2].translated_text) == ("Second", "[es] Second")
        assert user[-1].role == Role.MODEL

    @pytest.mark.asyncio
    async def test_unlogged_pending_entry_never_marks_earlier_round_failed(self, store, log):
        translation = TranslationGateway()
        translation.translate = AsyncMock(
            side_effect=[
                TranslationResult(translated_text="[es] First"),
                TranslationError("Translation failed: HTTP 503"),
            ]
        )
        orchestrator = Orchestrator(log, translation, _echo_model())
        await orchestrator.submit("First", _provider())

        store.failures = 1
        await orchestrator.submit("Second", _provider())

        assert self._translations(log, Pane.USER) == ["[es] First"]
        assert self._translations(log, Pane.MODEL) == ["[es] First", TRANSLATION_FAILED_MARKER]
        assert orchestrator.histories.user[2].translated_text == TRANSLATION_FAILED_MARKER

    @pytest.mark.asyncio
    async def test_round_completes_when_every_write_fails(self, store, log):
        orchestrator = Orchestrator(log, TranslationGateway(), _echo_model())
        await orchestrator.submit("First", _provider())
        before = log.entries_for(log.current_id)

        store.failures = 1000
        await orchestrator.submit("Second", _provider())

        assert log.entries_for(log.current_id) == before
        histories = orchestrator.histories
        assert len(histories.user) == len(histories.model) == len(histories.direct) == 4
        assert histories.user[-1].primary_text == "[Translated from es] Hola!"
        assert histories.direct[-1].primary_text == "Hi there!"
        assert orchestrator.busy is False
