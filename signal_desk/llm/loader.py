"""Load prompt definitions from Markdown files with YAML frontmatter."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from string import Template
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).parent / "prompts"


@dataclass
class PromptDefinition:
    """A parsed prompt from a markdown file."""

    name: str
    description: str
    body: str
    model_params: Dict[str, Any] = field(default_factory=dict)
    file_path: Optional[str] = None

    @property
    def temperature(self) -> float:
        return float(self.model_params.get("temperature", 0.4))

    @property
    def max_tokens(self) -> int:
        return int(self.model_params.get("max_tokens", 4096))

    def render(self, **values: Any) -> str:
        """Fill $placeholders in the prompt body."""
        return Template(self.body).safe_substitute(**values)


def load_prompt_file(path: Path) -> Optional[PromptDefinition]:
    """Parse a single prompt markdown file.

    Expected format:
        ---
        prompt_name: ...
        model_params: {temperature: 0.3, max_tokens: 2048}
        ---
        Prompt body
    """
    text = path.read_text(encoding="utf-8")

    if not text.startswith("---"):
        logger.warning("Prompt file %s missing YAML frontmatter, skipping", path)
        return None

    parts = text.split("---", 2)
    if len(parts) < 3:
        logger.warning("Prompt file %s has malformed frontmatter, skipping", path)
        return None

    try:
        meta = yaml.safe_load(parts[1].strip())
    except yaml.YAMLError as exc:
        logger.warning("Failed to parse YAML in %s: %s", path, exc)
        return None

    if not isinstance(meta, dict):
        logger.warning("Frontmatter in %s is not a dict, skipping", path)
        return None

    return PromptDefinition(
        name=meta.get("prompt_name", path.stem),
        description=meta.get("description", ""),
        body=parts[2].strip(),
        model_params=meta.get("model_params", {}) or {},
        file_path=str(path),
    )


@lru_cache(maxsize=None)
def load_prompt(name: str, prompts_dir: Path = PROMPTS_DIR) -> PromptDefinition:
    """Load a bundled prompt by name. Raises FileNotFoundError if absent."""
    path = prompts_dir / f"{name}.md"
    if not path.exists():
        raise FileNotFoundError(f"Prompt not found: {path}")
    defn = load_prompt_file(path)
    if defn is None:
        raise ValueError(f"Prompt file is malformed: {path}")
    logger.debug("Loaded prompt: %s", defn.name)
    return defn
