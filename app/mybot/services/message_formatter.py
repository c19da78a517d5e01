# -*- coding: utf-8 -*-
"""
Renders pane histories as Telegram HTML
"""
from html import escape
from typing import List, Sequence

from languages import get_language_name
from models import Message, Pane, PaneHistories, ProviderSettings, Role

# Telegram text limits
MAX_MESSAGE_LENGTH = int(4096 * 0.9)  # 3686 characters (90% of 4096 for safety)

PANE_TITLES = {
    Pane.USER: "🧑 User side (English)",
    Pane.MODEL: "🤖 Model side ({language})",
    Pane.DIRECT: "🎯 Direct (no translation)",
}


class PaneFormatter:
    """Formats one round, or a whole conversation, pane by pane"""

    @staticmethod
    def format_message(message: Message, pane: Pane) -> str:
        # The model pane shows target-language text, the others show primary text
        if pane == Pane.MODEL:
            text = message.translated_text or message.primary_text
            trace = message.translated_reasoning_trace or message.reasoning_trace
        elif pane == Pane.USER:
            text = message.primary_text
            trace = message.translated_reasoning_trace or message.reasoning_trace
        else:
            text = message.primary_text
            trace = message.reasoning_trace

        prefix = "<b>You:</b>" if message.role == Role.USER else "<b>Model:</b>"
        parts = [f"{prefix} {escape(text)}"]
        if trace:
            parts.append(f"<blockquote expandable>💭 {escape(trace)}</blockquote>")
        return "\n".join(parts)

    @staticmethod
    def format_pane(title: str, messages: Sequence[Message], pane: Pane) -> str:
        if not messages:
            return f"<b>{title}</b>\n<i>(empty)</i>"
        body = "\n\n".join(PaneFormatter.format_message(m, pane) for m in messages)
        return f"<b>{title}</b>\n{body}"

    @staticmethod
    def format_round(
        histories: PaneHistories, offsets: dict[Pane, int], target_language: str
    ) -> str:
        """Render every message appended after ``offsets`` on each pane"""
        sections: List[str] = []
        for pane in Pane:
            title = PANE_TITLES[pane].format(language=escape(get_language_name(target_language)))
            messages = histories.for_pane(pane)[offsets.get(pane, 0) :]
            sections.append(PaneFormatter.format_pane(title, messages, pane))

        return PaneFormatter.truncate("\n\n━━━━━━━━━━\n\n".join(sections))

    @staticmethod
    def format_history_list(conversation_ids: Sequence[str], current_id: str) -> str:
        if not conversation_ids:
            return "📭 No conversations yet"

        lines = ["🗂 Known conversations:\n"]
        for i, conversation_id in enumerate(conversation_ids, 1):
            marker = " ⬅️ current" if conversation_id == current_id else ""
            lines.append(f"{i}. <code>{escape(conversation_id)}</code>{marker}")
        return "\n".join(lines)

    @staticmethod
    def format_settings(provider: ProviderSettings) -> str:
        translation_mode = "Google Translate" if provider.translation_api_key else "placeholder"
        return "\n".join(
            [
                "<b>⚙️ Settings</b>",
                f"• Provider: <code>{escape(provider.provider)}</code>",
                f"• Model: <code>{escape(provider.model_name or '-')}</code>",
                f"• Host: <code>{escape(provider.api_host)}</code>",
                f"• Target language: {escape(get_language_name(provider.target_language))}",
                f"• Temperature: {provider.temperature}",
                f"• Max tokens: {provider.max_tokens}",
                f"• Translation: {translation_mode}",
                f"• Model API key: {'configured' if provider.api_key else 'missing'}",
            ]
        )

    @staticmethod
    def truncate(text: str) -> str:
        if len(text) <= MAX_MESSAGE_LENGTH:
            return text
        # Prefer cutting between messages so no HTML tag is split
        cut = text.rfind("\n\n", 0, MAX_MESSAGE_LENGTH - 20)
        if cut <= 0:
            return text[: MAX_MESSAGE_LENGTH - 20] + "..."
        return text[:cut] + "\n\n<i>... (truncated)</i>"
