"""Tests for prompt loading and substitution."""
from unittest.mock import MagicMock

import pytest

from revolucare.reasoning.langfuse_integration import prompt_path_to_langfuse_name
from revolucare.reasoning.prompt_loader import PromptLoader, substitute_variables

from tests.conftest import PROMPTS_DIR


@pytest.fixture
def prompts_dir(tmp_path):
    (tmp_path / "care_plans").mkdir()
    (tmp_path / "care_plans" / "sample.txt").write_text(
        "Facts:\n{facts}\nContext: {additional_context}\n", encoding="utf-8"
    )
    return tmp_path


class TestSubstitution:
    def test_scalars_and_json(self):
        text = substitute_variables("{name} has {items}", {"name": "Ana", "items": ["a"]})
        assert text.startswith("Ana has [")
        assert '"a"' in text

    def test_unknown_placeholders_are_left(self):
        assert substitute_variables("{a} {b}", {"a": 1}) == "1 {b}"


class TestPromptLoader:
    def test_missing_directory_rejected(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            PromptLoader(tmp_path / "nope")

    def test_load_with_variables(self, prompts_dir):
        loader = PromptLoader(prompts_dir)
        text = loader.load(
            "care_plans/sample.txt",
            {"facts": {"diagnoses": ["Hypertension"]}, "additional_context": "Lives alone"},
        )
        assert '"Hypertension"' in text
        assert "Context: Lives alone" in text

    def test_get_prompt_variables(self, prompts_dir):
        loader = PromptLoader(prompts_dir)
        assert loader.get_prompt_variables("care_plans/sample.txt") == ["facts", "additional_context"]

    def test_missing_prompt(self, prompts_dir):
        loader = PromptLoader(prompts_dir)
        with pytest.raises(FileNotFoundError):
            loader.load("care_plans/absent.txt")

    def test_path_traversal_blocked(self, prompts_dir):
        loader = PromptLoader(prompts_dir / "care_plans")
        with pytest.raises(ValueError, match="traversal"):
            loader.load("../care_plans/../../etc/passwd")

    def test_clear_cache_rereads_files(self, prompts_dir):
        loader = PromptLoader(prompts_dir)
        loader.load("care_plans/sample.txt")
        (prompts_dir / "care_plans" / "sample.txt").write_text("Updated {facts}", encoding="utf-8")

        assert loader.load("care_plans/sample.txt", {"facts": "x"}).startswith("Facts:")
        loader.clear_cache()
        assert loader.load("care_plans/sample.txt", {"facts": "x"}) == "Updated x"

    def test_langfuse_prompt_preferred(self, prompts_dir):
        prompt = MagicMock()
        prompt.compile.return_value = "remote prompt"
        langfuse = MagicMock()
        langfuse.get_prompt.return_value = prompt
        loader = PromptLoader(prompts_dir, langfuse_client=langfuse)

        text = loader.load("care_plans/sample.txt", {"facts": {"a": 1}, "additional_context": "x"})

        assert text == "remote prompt"
        langfuse.get_prompt.assert_called_once_with("care_plans--sample", label="production")
        assert prompt.compile.call_args.kwargs["additional_context"] == "x"

    def test_langfuse_failure_falls_back_to_local(self, prompts_dir):
        langfuse = MagicMock()
        langfuse.get_prompt.side_effect = RuntimeError("unreachable")
        loader = PromptLoader(prompts_dir, langfuse_client=langfuse)

        text = loader.load("care_plans/sample.txt", {"facts": "none", "additional_context": "x"})

        assert text.startswith("Facts:\nnone")

    def test_langfuse_prompt_is_cached(self, prompts_dir):
        prompt = MagicMock()
        prompt.compile.return_value = "remote"
        langfuse = MagicMock()
        langfuse.get_prompt.return_value = prompt
        loader = PromptLoader(prompts_dir, langfuse_client=langfuse)

        loader.load("care_plans/sample.txt")
        loader.load("care_plans/sample.txt")

        langfuse.get_prompt.assert_called_once()


class TestShippedPrompts:
    @pytest.mark.parametrize(
        "path",
        [
            "extraction/medical_extraction.txt",
            "extraction/text_extraction.txt",
            "extraction/form_recognition.txt",
            "extraction/identity_verification.txt",
        ],
    )
    def test_extraction_prompts_take_document_variables(self, path):
        variables = PromptLoader(PROMPTS_DIR).get_prompt_variables(path)
        assert {"document_name", "document_type", "content"} <= set(variables)

    @pytest.mark.parametrize(
        "path",
        [
            "care_plans/comprehensive.txt",
            "care_plans/focused_rehabilitation.txt",
            "care_plans/holistic_wellness.txt",
        ],
    )
    def test_strategy_prompts_take_facts(self, path):
        variables = PromptLoader(PROMPTS_DIR).get_prompt_variables(path)
        assert {"facts", "additional_context"} <= set(variables)


class TestLangfuseNaming:
    def test_path_to_name(self):
        assert prompt_path_to_langfuse_name("care_plans/comprehensive.txt") == "care_plans--comprehensive"
