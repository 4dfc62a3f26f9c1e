"""Configuration and constants for agent-session-store."""

from pathlib import Path

# Agent colors and badges (badge is the display name shown in the CLI)
AGENTS = {
    "claude-code": {"color": "#E87B35", "badge": "Claude Code"},
    "codex": {"color": "#00A67E", "badge": "Codex CLI"},
    "gemini-cli": {"color": "#4285F4", "badge": "Gemini CLI"},
    "opencode": {"color": "#CFCECD", "badge": "OpenCode"},
    "factory-droid": {"color": "#FF6B35", "badge": "Factory Droid"},
}

# Local storage paths
CLAUDE_DIR = Path.home() / ".claude" / "projects"
CODEX_DIR = Path.home() / ".codex" / "sessions"
GEMINI_DIR = Path.home() / ".gemini" / "history"
OPENCODE_DIR = Path.home() / ".local" / "share" / "opencode" / "storage"
OPENCODE_DB = Path.home() / ".local" / "share" / "opencode" / "opencode.db"
FACTORY_DIR = Path.home() / ".factory" / "sessions"

# Remote storage paths ("~" is expanded by the remote shell)
REMOTE_CLAUDE_DIR = "~/.claude/projects"
REMOTE_CODEX_DIR = "~/.codex/sessions"
REMOTE_GEMINI_DIR = "~/.gemini/history"
REMOTE_OPENCODE_DIR = "~/.local/share/opencode/storage"
REMOTE_FACTORY_DIR = "~/.factory/sessions"

# Engine-owned state
ORIGINS_FILE = Path.home() / ".config" / "agent-session-store" / "session-origins.json"
LOG_FILE = Path.home() / ".cache" / "agent-session-store" / "agent-session-store.log"

# Listing and reading
PREVIEW_LENGTH = 200
DEFAULT_PAGE_LIMIT = 100
DEFAULT_MESSAGE_LIMIT = 20

# Search
SEARCH_MODES = ("title", "user", "assistant", "all")
SEARCH_CONTEXT_CHARS = 60

# Remote shell
SSH_TIMEOUT = 30.0

# Claude pricing in USD per million tokens
CLAUDE_PRICING = {
    "input": 3.0,
    "output": 15.0,
    "cache_read": 0.30,
    "cache_creation": 3.75,
}
