"""
Prompt management for recognition and translation calls.
Loads prompts from YAML files in settings/prompts with built-in fallbacks.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_PROMPTS_DIR = Path("settings/prompts")

_PROMPT_FILES = {
    "recognition": "recognition.yaml",
    "translation": "translation.yaml",
}

_FALLBACK_PROMPTS: dict[str, dict[str, str]] = {
    "recognition": {
        "user": (
            "Recognize all text in this image. Keep the original paragraph structure, lists and "
            "headings, including headers and footers. Output only the recognized text without any "
            "explanation."
        ),
    },
    "translation": {
        "system": (
            "You are a professional translator. Translate the user's text into {target_language}. "
            "The translation must be accurate and fluent. Keep proper nouns, code and formulas as they are. "
            "Output only the translation."
        ),
    },
}


class PromptManager:
    """Loads prompts from YAML with hardcoded fallbacks.

    Example:
        >>> prompts = PromptManager(target_language="Simplified Chinese")
        >>> prompts.get_prompt("translation", "system")
    """

    def __init__(self, prompts_dir: Path | str | None = None, target_language: str = "Simplified Chinese"):
        self.prompts_dir = Path(prompts_dir) if prompts_dir is not None else DEFAULT_PROMPTS_DIR
        self.target_language = target_language
        self.prompts = self._load_prompts()

    def _load_prompts(self) -> dict[str, Any]:
        """Load prompts from YAML files"""
        prompts: dict[str, Any] = {}

        if not self.prompts_dir.exists():
            logger.debug("Prompts directory not found: %s (using built-in prompts)", self.prompts_dir)
            return prompts

        for category, filename in _PROMPT_FILES.items():
            prompt_file = self.prompts_dir / filename
            if not prompt_file.exists():
                continue
            try:
                with prompt_file.open("r", encoding="utf-8") as f:
                    data = yaml.safe_load(f)
            except (OSError, yaml.YAMLError) as e:
                logger.warning("Failed to load prompts from %s: %s", prompt_file, e)
                continue
            if isinstance(data, dict):
                prompts[category] = data
                logger.debug("Loaded prompts from %s", prompt_file)
            else:
                logger.warning("Ignoring prompt file without a mapping: %s", prompt_file)

        return prompts

    def get_prompt(self, category: str, prompt_type: str) -> str:
        """Return a prompt with ``{target_language}`` filled in.

        Args:
            category: "recognition" or "translation"
            prompt_type: Key inside the category (e.g. "user", "system")

        Raises:
            KeyError: If neither the YAML files nor the fallbacks define the prompt
        """
        template = self.prompts.get(category, {}).get(prompt_type)
        if not isinstance(template, str):
            template = _FALLBACK_PROMPTS[category][prompt_type]
        return template.replace("{target_language}", self.target_language)

    @property
    def recognition_prompt(self) -> str:
        return self.get_prompt("recognition", "user")

    @property
    def translation_prompt(self) -> str:
        return self.get_prompt("translation", "system")
