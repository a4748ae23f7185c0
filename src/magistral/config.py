# magistral: Environment-driven configuration constants shared by the transport, orchestrator and CLI.

import os
import pathlib

# Chat completions endpoint (Mistral-compatible)
MAGISTRAL_API_KEY = os.environ.get("MAGISTRAL_API_KEY", "") or os.environ.get("MISTRAL_API_KEY", "")
AI_MODEL = os.environ.get("AI_MODEL", "magistral-medium-latest")
MAGISTRAL_API_URL = os.environ.get("MAGISTRAL_API_URL", "https://api.mistral.ai/v1/chat/completions")

# Sampling temperature sent with every request
TEMPERATURE = float(os.environ.get("MAGISTRAL_TEMPERATURE", "0.5"))

# Rate-limit (HTTP 429) retries before the turn fails
MAX_RETRIES = int(os.environ.get("MAGISTRAL_MAX_RETRIES", "10"))

# Backoff cap in seconds
MAX_BACKOFF_SEC = int(os.environ.get("MAGISTRAL_MAX_BACKOFF_SEC", "60"))

# Trailing history messages sent per request
HISTORY_WINDOW = int(os.environ.get("MAGISTRAL_HISTORY_WINDOW", "10"))

# Read timeout (seconds) between stream bytes; a silent stream fails after this
REQUEST_TIMEOUT = float(os.environ.get("MAGISTRAL_REQUEST_TIMEOUT", "300"))

# Consecutive read_file continuations allowed within one user turn
MAX_TOOL_DEPTH = int(os.environ.get("MAGISTRAL_MAX_TOOL_DEPTH", "8"))

# Quiet period before an editor change is persisted
AUTOSAVE_DELAY = float(os.environ.get("MAGISTRAL_AUTOSAVE_DELAY", "0.5"))

# Conversation history cap on load
CONV_CAP_TURNS = int(os.environ.get("MAGISTRAL_CONV_CAP_TURNS", "200"))

# Home for the virtual store, settings and conversation log
MAGISTRAL_HOME = pathlib.Path(os.environ.get("MAGISTRAL_HOME", "") or (pathlib.Path.home() / ".magistral"))

# Key holding the serialized virtual tree inside the key-value store
VFS_STORAGE_KEY = "magistral_vfs"
