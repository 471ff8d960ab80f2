"""Configuration management for the News RAG Orchestrator."""
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _get_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _get_optional_int(name: str):
    value = os.getenv(name, "").strip()
    return int(value) if value else None


# API Keys
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")

# Server Configuration
PORT = int(os.getenv("PORT", "3000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "text")  # "text" or "json"

# CORS Configuration
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "https://kart-rag-chat-bot.netlify.app"
).split(",")

# Retrieval backend (vector search service)
RETRIEVAL_API_URL = os.getenv("RETRIEVAL_API_URL", "http://localhost:5000")
DEFAULT_TOP_K = int(os.getenv("DEFAULT_TOP_K", "5"))

# Generation backend (Gemini generateContent)
GEMINI_API_URL = os.getenv(
    "GEMINI_API_URL",
    "https://generativelanguage.googleapis.com/v1beta"
)
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")

# Prompt template
PROMPT_TEMPLATE_VERSION = os.getenv("PROMPT_TEMPLATE_VERSION", "news-v1")

# Generate an answer even when retrieval returns nothing
ALLOW_EMPTY_CONTEXT = _get_bool("ALLOW_EMPTY_CONTEXT", False)

# Session storage
SESSION_BACKEND = os.getenv("SESSION_BACKEND", "supabase")  # "supabase" or "memory"
SESSION_TABLE = os.getenv("SESSION_TABLE", "session_store")
SESSION_TTL_SECONDS = _get_optional_int("SESSION_TTL_SECONDS")  # None keeps sessions forever

# Timeouts (seconds)
RETRIEVAL_TIMEOUT_SECONDS = float(os.getenv("RETRIEVAL_TIMEOUT_SECONDS", "15"))
GENERATION_TIMEOUT_SECONDS = float(os.getenv("GENERATION_TIMEOUT_SECONDS", "30"))
STORE_TIMEOUT_SECONDS = float(os.getenv("STORE_TIMEOUT_SECONDS", "5"))
