"""Session storage adapters for different coding agents."""

from .base import Message, SessionProvider, SessionRecord
from .claude import ClaudeCodeAdapter
from .codex import CodexAdapter
from .factory_droid import FactoryDroidAdapter
from .gemini import GeminiAdapter
from .opencode import OpenCodeAdapter

__all__ = [
    "Message",
    "SessionProvider",
    "SessionRecord",
    "ClaudeCodeAdapter",
    "CodexAdapter",
    "FactoryDroidAdapter",
    "GeminiAdapter",
    "OpenCodeAdapter",
]
