from .conversation_log import ConversationLog
from .orchestrator import Orchestrator
from .routing import replay, to_message
from .storage import DatabaseStore, KeyValueStore, MemoryStore

__all__ = [
    "ConversationLog",
    "Orchestrator",
    "replay",
    "to_message",
    "DatabaseStore",
    "KeyValueStore",
    "MemoryStore",
]
