"""
Shared client instances — Redis.

Vendor SDK clients (OpenAI, Anthropic, Gemini) are built per ProviderConfig in
app.services.llm so the scan workflow can be handed fakes in tests. Importing
this module is always safe, even when env vars are missing.
"""
import redis

from app.config import REDIS_URL

# ── Redis ─────────────────────────────────────────────────────────────────────
redis_client = redis.from_url(REDIS_URL, decode_responses=True)

# RQ pickles job payloads and needs raw bytes back
rq_connection = redis.from_url(REDIS_URL)
