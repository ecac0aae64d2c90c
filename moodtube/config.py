"""
Runtime settings, read once from the environment (and a local .env file).

A missing OPENAI_API_KEY is not an error: recommendations degrade to the
static fallback lists instead.
"""

import os

from dotenv import load_dotenv

load_dotenv()

# ─────────────────────────────────────────────────────────────
#  Recommendations (OpenAI)
# ─────────────────────────────────────────────────────────────

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_TEMPERATURE = float(os.getenv("OPENAI_TEMPERATURE", "0.7"))
RECOMMEND_TIMEOUT = float(os.getenv("RECOMMEND_TIMEOUT", "30"))

DEFAULT_SONG_COUNT = 10
MAX_SONG_COUNT = 25

# ─────────────────────────────────────────────────────────────
#  Video search (ytmusicapi)
# ─────────────────────────────────────────────────────────────

SEARCH_TIMEOUT = float(os.getenv("SEARCH_TIMEOUT", "15"))
SEARCH_CACHE_TTL = int(os.getenv("SEARCH_CACHE_TTL", "600"))   # 10 min
SEARCH_WORKERS = int(os.getenv("SEARCH_WORKERS", "4"))

# Simultaneous resolver calls while building a queue
RESOLVE_BATCH_SIZE = 3

# ─────────────────────────────────────────────────────────────
#  Sessions
# ─────────────────────────────────────────────────────────────

SESSION_TTL = 7200          # 2 hours
MAX_SESSIONS = 100
RECENT_MOODS_LIMIT = 5

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
