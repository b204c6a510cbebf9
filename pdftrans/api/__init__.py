"""Clients for the recognition and translation service."""

from __future__ import annotations

from .openai_async import AsyncOpenAIClient, classify_openai_error

__all__ = ["AsyncOpenAIClient", "classify_openai_error"]
