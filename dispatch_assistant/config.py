"""
dispatch_assistant/config.py
Runtime configuration flags, read from the environment (and a local .env).
"""

import os

import dotenv

dotenv.load_dotenv()


def _to_bool(val: str | None, default: bool = False) -> bool:
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "y", "on"}


def _to_float(val: str | None, default: float) -> float:
    try:
        return float(val) if val is not None else default
    except ValueError:
        return default


def _to_int(val: str | None, default: int) -> int:
    try:
        return int(val) if val is not None else default
    except ValueError:
        return default


OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
CHAT_TEMPERATURE: float = _to_float(os.getenv("CHAT_TEMPERATURE"), 0.7)
EXTRACTION_TEMPERATURE: float = _to_float(os.getenv("EXTRACTION_TEMPERATURE"), 0.3)
EXTRACTION_MAX_TOKENS: int = _to_int(os.getenv("EXTRACTION_MAX_TOKENS"), 600)
STORE_ROOT: str = os.getenv("STORE_ROOT", "local_store")
DEFAULT_LANGUAGE: str = os.getenv("DEFAULT_LANGUAGE", "en-US")
RENDER_PDF: bool = _to_bool(os.getenv("RENDER_PDF"), default=True)
