"""Miscellaneous helpers for the translator."""

from __future__ import annotations

from datetime import UTC, datetime, tzinfo
from zoneinfo import ZoneInfo

from .constants import DEFAULT_TARGET_LANGUAGE, TRANSLATION_SKIP_RATIO

TimeZoneLike = str | tzinfo

_STATE: dict[str, tzinfo] = {"tz": UTC}

# CJK Unified Ideographs, Extension A, Extension B
_CJK_RANGES = ((0x4E00, 0x9FFF), (0x3400, 0x4DBF), (0x20000, 0x2A6DF))

# Target language names written in Han characters
_HAN_LANGUAGE_MARKERS = ("chinese", "mandarin", "cantonese", "中文", "汉语", "漢語")


def _coerce_timezone(tz: TimeZoneLike) -> tzinfo:
    if isinstance(tz, str):
        return ZoneInfo(tz)
    return tz


def set_default_timezone(tz: TimeZoneLike) -> None:
    """Set the default timezone used by tz_now."""
    _STATE["tz"] = _coerce_timezone(tz)


def get_default_timezone() -> tzinfo:
    """Return the currently configured default timezone."""
    return _STATE["tz"]


def tz_now() -> datetime:
    """Return the current time in the default timezone."""
    return datetime.now(_STATE["tz"])


def is_cjk_char(char: str) -> bool:
    code = ord(char)
    return any(low <= code <= high for low, high in _CJK_RANGES)


def cjk_ratio(text: str) -> float:
    """Fraction of characters in ``text`` that are CJK ideographs."""
    if not text:
        return 0.0
    return sum(1 for c in text if is_cjk_char(c)) / len(text)


def is_han_language(language: str) -> bool:
    """Return True when ``language`` names a Chinese variety (written in Han characters)."""
    name = language.strip().lower()
    if name in ("zh", "zho", "chi") or name.startswith(("zh-", "zh_")):
        return True
    return any(marker in name for marker in _HAN_LANGUAGE_MARKERS)


def needs_translation(
    text: str,
    threshold: float = TRANSLATION_SKIP_RATIO,
    target_language: str = DEFAULT_TARGET_LANGUAGE,
) -> bool:
    """Return False when the text is empty or already mostly in the target script.

    The script check only applies to Chinese targets; text for any other
    target language is always translated.

    Examples:
        >>> needs_translation("Hello world")
        True
        >>> needs_translation("你好世界")
        False
        >>> needs_translation("你好世界", target_language="English")
        True
        >>> needs_translation("   ")
        False
    """
    stripped = text.strip()
    if not stripped:
        return False
    if not is_han_language(target_language):
        return True
    return cjk_ratio(stripped) <= threshold


def make_preview(text: str, limit: int) -> str:
    """Return at most ``limit`` characters of ``text``."""
    return text[:limit]
