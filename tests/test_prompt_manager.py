from pathlib import Path

from pdftrans.prompt import PromptManager


def test_prompt_manager_falls_back_without_prompt_files(tmp_path: Path):
    manager = PromptManager(prompts_dir=tmp_path / "missing", target_language="Korean")

    assert manager.prompts == {}
    assert "Korean" in manager.translation_prompt
    assert "{target_language}" not in manager.translation_prompt
    assert manager.recognition_prompt


def test_prompt_manager_loads_yaml_prompts(tmp_path: Path):
    (tmp_path / "translation.yaml").write_text(
        "system: |\n  Translate everything into {target_language}.\n", encoding="utf-8"
    )

    manager = PromptManager(prompts_dir=tmp_path, target_language="French")

    assert manager.translation_prompt.strip() == "Translate everything into French."
    assert "Recognize" in manager.recognition_prompt


def test_prompt_manager_ignores_broken_yaml(tmp_path: Path):
    (tmp_path / "recognition.yaml").write_text("user: [unclosed\n", encoding="utf-8")

    manager = PromptManager(prompts_dir=tmp_path)

    assert "recognition" not in manager.prompts
    assert manager.recognition_prompt


def test_bundled_prompt_files_are_valid():
    prompts_dir = Path(__file__).resolve().parents[1] / "settings" / "prompts"

    manager = PromptManager(prompts_dir=prompts_dir, target_language="Simplified Chinese")

    assert set(manager.prompts) == {"recognition", "translation"}
    assert "Simplified Chinese" in manager.translation_prompt
