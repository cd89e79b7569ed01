"""Prompt templates: local ``prompts/**.txt`` files, optionally overridden from Langfuse."""
import json
import re
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from revolucare.reasoning.langfuse_integration import prompt_path_to_langfuse_name
from revolucare.config.logging_config import get_logger

logger = get_logger(__name__)

REMOTE_PROMPT_TTL_SECONDS = 60
PROMPT_LABEL = "production"

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


def _render_value(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, indent=2, default=str)
    return str(value)


def substitute_variables(template: str, variables: Dict[str, Any]) -> str:
    """
    Fill ``{name}`` placeholders. Structured values are rendered as indented
    JSON; placeholders with no matching variable are left in place.
    """

    def _fill(match: "re.Match[str]") -> str:
        name = match.group(1)
        return _render_value(variables[name]) if name in variables else match.group(0)

    return _PLACEHOLDER.sub(_fill, template)


class PromptLoader:
    """
    Resolves a prompt path such as ``care_plans/comprehensive.txt`` to text.

    When a Langfuse client is supplied, the ``production`` version of the
    matching remote prompt wins and is cached for a minute. Any Langfuse
    problem falls back to the file shipped with the package.
    """

    def __init__(self, prompts_dir: Path, langfuse_client=None):
        self.prompts_dir = Path(prompts_dir).resolve()
        if not self.prompts_dir.is_dir():
            raise FileNotFoundError(f"Prompts directory not found: {self.prompts_dir}")
        self.langfuse_client = langfuse_client
        self._templates: Dict[str, str] = {}
        self._remote: Dict[str, Tuple[Any, float]] = {}

    def _template(self, prompt_path: str) -> str:
        if prompt_path in self._templates:
            return self._templates[prompt_path]

        path = (self.prompts_dir / prompt_path).resolve()
        if self.prompts_dir not in path.parents:
            raise ValueError(f"Prompt path traversal blocked: {prompt_path}")
        if not path.is_file():
            raise FileNotFoundError(f"Prompt not found: {prompt_path}")

        template = path.read_text(encoding="utf-8")
        self._templates[prompt_path] = template
        return template

    def _remote_prompt(self, prompt_path: str):
        if self.langfuse_client is None:
            return None
        name = prompt_path_to_langfuse_name(prompt_path)
        cached = self._remote.get(name)
        if cached and time.monotonic() - cached[1] < REMOTE_PROMPT_TTL_SECONDS:
            return cached[0]
        try:
            prompt = self.langfuse_client.get_prompt(name, label=PROMPT_LABEL)
        except Exception as e:
            logger.debug("Remote prompt unavailable, using local file", prompt=name, error=str(e))
            return None
        self._remote[name] = (prompt, time.monotonic())
        return prompt

    def load(self, prompt_path: str, variables: Optional[Dict[str, Any]] = None) -> str:
        """
        Render a prompt.

        Args:
            prompt_path: Path relative to the prompts directory
            variables: Placeholder values

        Raises:
            FileNotFoundError: If no local template exists and Langfuse has none
            ValueError: If the path leaves the prompts directory
        """
        variables = variables or {}

        remote = self._remote_prompt(prompt_path)
        if remote is not None:
            try:
                return remote.compile(**{k: _render_value(v) for k, v in variables.items()})
            except Exception as e:
                logger.debug("Remote prompt failed to compile, using local file", prompt_path=prompt_path, error=str(e))

        template = self._template(prompt_path)
        missing = sorted(set(_PLACEHOLDER.findall(template)) - set(variables))
        if missing:
            logger.warning("Prompt rendered with unfilled placeholders", prompt_path=prompt_path, missing=missing)
        return substitute_variables(template, variables)

    def get_prompt_variables(self, prompt_path: str) -> List[str]:
        """Placeholder names in first-appearance order."""
        return list(dict.fromkeys(_PLACEHOLDER.findall(self._template(prompt_path))))

    def clear_cache(self) -> None:
        self._templates.clear()
        self._remote.clear()
