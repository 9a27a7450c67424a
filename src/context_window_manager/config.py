# context_window_manager/config.py
from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _list_env(name: str) -> list[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


# Model used when the caller does not describe one
DEFAULT_MODEL_ID = os.getenv("CWM_DEFAULT_MODEL", "gemini-2.5-flash")

# Hard fallback when neither settings nor the model declare a context length
DEFAULT_CONTEXT_TOKENS = _int_env("CWM_DEFAULT_CONTEXT_TOKENS", 8192)

# Smart summarization
DEFAULT_RECENT_ZONE_TOKENS = _int_env("CWM_RECENT_ZONE_TOKENS", 35000)

# Backend dispatch
DEFAULT_BACKEND_TIMEOUT_SECONDS = _float_env("CWM_BACKEND_TIMEOUT_SECONDS", 60.0)
DEFAULT_PENALTY_SECONDS = _float_env("CWM_PENALTY_SECONDS", 60.0)
DEFAULT_RETRY_DELAY_SECONDS = _float_env("CWM_RETRY_DELAY_SECONDS", 0.3)

# Backend endpoints and models
DEFAULT_GEMINI_BASE_URL = os.getenv("CWM_GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta")
DEFAULT_GEMINI_SUMMARIZER_MODEL = os.getenv("CWM_GEMINI_SUMMARIZER_MODEL", "gemini-2.5-flash")
DEFAULT_KOBOLDCPP_URL = os.getenv("CWM_KOBOLDCPP_URL", "http://127.0.0.1:5001")
DEFAULT_OPENROUTER_BASE_URL = os.getenv("CWM_OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")
DEFAULT_OPENROUTER_MODEL_ID = os.getenv("CWM_OPENROUTER_MODEL", "google/gemini-flash-1.5")

# Credentials
GEMINI_API_KEYS = _list_env("GEMINI_API_KEYS")
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY", "")
