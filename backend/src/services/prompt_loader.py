"""Jinja2-based prompt template loader.

Templates live in ``backend/prompts/`` and are rendered with context
variables. Templates are reloaded on every call so prompts can be edited
without restarting the server. Minimal inline fallbacks cover the case where
the prompts directory is missing.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import jinja2

logger = logging.getLogger(__name__)

# backend/src/services/prompt_loader.py -> backend/prompts/
DEFAULT_PROMPTS_DIR = Path(__file__).resolve().parent.parent.parent / "prompts"

INLINE_PROMPTS: Dict[str, str] = {
    "chat/system.md": """You are Cogniflow's Architect, an assistant inside a personal knowledge management app.
{% if notes %}
Available notes: {{ notes | tojson }}
{% endif %}{% if folders %}
Available folders: {{ folders | tojson }}
{% endif %}
Use the provided tools to read and manage notes and folders. Be concise.
""",
    "insights/summarize.md": """Summarize the following note in one sentence and give 3 to 5 tags.

Content: "{{ content }}"
""",
    "insights/connections.md": """Identify strong connections between these notes: {{ notes | tojson }}
""",
}


class PromptLoaderError(Exception):
    """Raised when a prompt cannot be loaded."""

    pass


class PromptLoader:
    """Load and render Jinja2 prompt templates.

    Example:
        >>> loader = PromptLoader()
        >>> system_prompt = loader.load("chat/system.md", {"notes": [], "folders": []})
    """

    def __init__(self, prompts_dir: Optional[Path] = None) -> None:
        self.prompts_dir = prompts_dir or DEFAULT_PROMPTS_DIR

        if self.prompts_dir.is_dir():
            self.env = jinja2.Environment(
                loader=jinja2.FileSystemLoader(str(self.prompts_dir)),
                autoescape=False,  # Prompts are markdown, not HTML
                auto_reload=True,
                keep_trailing_newline=True,
            )
            logger.debug(
                "PromptLoader initialized with filesystem templates",
                extra={"prompts_dir": str(self.prompts_dir)},
            )
        else:
            self.env = None
            logger.warning(
                "Prompts directory not found, using inline fallbacks",
                extra={"prompts_dir": str(self.prompts_dir)},
            )

    def load(self, path: str, context: Optional[Dict[str, Any]] = None) -> str:
        """Load and render a prompt template.

        Args:
            path: Relative path to the template file (e.g., "chat/system.md").
            context: Variables to render into the template.

        Raises:
            PromptLoaderError: If the template cannot be found or rendered.
        """
        context = context or {}

        if self.env is not None:
            try:
                template = self.env.get_template(path)
                return template.render(**context)
            except jinja2.TemplateNotFound:
                logger.debug(
                    "Template not found in filesystem, trying inline fallback",
                    extra={"path": path},
                )
            except jinja2.TemplateError as e:
                logger.error(
                    "Failed to render template",
                    extra={"path": path, "error": str(e)},
                )
                raise PromptLoaderError(f"Failed to render template {path}: {e}") from e

        return self._get_inline_prompt(path, context)

    def _get_inline_prompt(self, path: str, context: Dict[str, Any]) -> str:
        template_str = INLINE_PROMPTS.get(path)
        if template_str is None:
            logger.warning(
                "No inline fallback for prompt path",
                extra={"path": path, "available": list(INLINE_PROMPTS)},
            )
            raise PromptLoaderError(
                f"Prompt not found: {path}. Available inline prompts: {list(INLINE_PROMPTS)}"
            )

        try:
            return jinja2.Environment(autoescape=False).from_string(template_str).render(**context)
        except jinja2.TemplateError as e:
            logger.error(
                "Failed to render inline template",
                extra={"path": path, "error": str(e)},
            )
            raise PromptLoaderError(f"Failed to render inline template {path}: {e}") from e

    def list_available(self) -> Dict[str, list[str]]:
        """Template paths found on disk and available inline."""
        result: Dict[str, list[str]] = {"filesystem": [], "inline": sorted(INLINE_PROMPTS)}
        if self.prompts_dir.is_dir():
            for md_file in self.prompts_dir.rglob("*.md"):
                result["filesystem"].append(md_file.relative_to(self.prompts_dir).as_posix())
        return result


__all__ = ["PromptLoader", "PromptLoaderError", "DEFAULT_PROMPTS_DIR", "INLINE_PROMPTS"]
