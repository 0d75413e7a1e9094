"""Centralized configurable defaults for modhub.

All tunable parameters in one place. Values that operators are expected to
change are read from the environment; the rest are protocol constants.
"""

from __future__ import annotations

import os
from pathlib import Path

# Aggregation server
DEFAULT_SERVER_URL = os.environ.get("MODHUB_DEFAULT_SERVER", "http://localhost:3000")
SERVER_URL_STORAGE_KEY = "serverUrl"
FETCH_TIMEOUT = 10.0  # seconds
HEALTH_CHECK_MIN_INTERVAL = 5.0  # seconds between health checks
HEALTH_BACKOFF_MIN = 5.0  # seconds
HEALTH_BACKOFF_MAX = 3600.0  # 1 hour
HEALTH_BACKOFF_MULTIPLIER = 3
PAYLOAD_TOO_LARGE_MESSAGE = "request entity too large"
TOP_GAMES_KEY = "top-games"

# UI falls back to relays once the retry loop has gone past this many attempts
RELAY_FALLBACK_RETRY_THRESHOLD = 2

# Web of trust
SITE_WOT_PUBKEY = os.environ.get("MODHUB_SITE_WOT_PUBKEY", "")
WOT_MAX_DEPTH = int(os.environ.get("MODHUB_WOT_MAX_DEPTH", "2"))
WOT_DECAY_FACTOR = float(os.environ.get("MODHUB_WOT_DECAY", "0.5"))
WOT_MAX_SCORE = int(os.environ.get("MODHUB_WOT_MAX_SCORE", "100"))

# Nostr event kinds used to build the follow graph
KIND_CONTACTS = 3
KIND_MUTE_LIST = 10000

# Local key-value storage
STORAGE_PATH = Path(
    os.environ.get("MODHUB_STORAGE_PATH", str(Path.home() / ".modhub" / "storage.json"))
)
