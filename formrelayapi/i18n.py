import json
from functools import lru_cache
from pathlib import Path
from typing import Callable, Optional

DEFAULT_LANGUAGE = "zh-CN"
SUPPORTED_LANGUAGES = ("zh-CN", "en-US")

LOCALES_DIR = Path(__file__).parent / "locales"


@lru_cache()
def load_locale(language: str) -> dict:
    with open(LOCALES_DIR / f"{language}.json", encoding="utf-8") as f:
        return json.load(f)


def resolve_language(language: Optional[str]) -> str:
    return language if language in SUPPORTED_LANGUAGES else DEFAULT_LANGUAGE


def get_translation(language: Optional[str] = DEFAULT_LANGUAGE) -> Callable[..., str]:
    """Return ``t(key, default=None)`` looking up dotted key paths, e.g. ``email.field``."""
    locale = load_locale(resolve_language(language))

    def t(key: str, default: Optional[str] = None) -> str:
        value = locale
        for part in key.split("."):
            value = value.get(part) if isinstance(value, dict) else None
            if value is None:
                break
        if isinstance(value, str) and value:
            return value
        return default or key

    return t
