# -*- coding: utf-8 -*-

from .command_handler import (
    start_command,
    help_command,
    new_command,
    export_command,
    export_all_command,
    history_command,
    resume_command,
    settings_command,
)
from .message_handler import handle_message

__all__ = [
    "start_command",
    "help_command",
    "new_command",
    "export_command",
    "export_all_command",
    "history_command",
    "resume_command",
    "settings_command",
    "handle_message",
]
