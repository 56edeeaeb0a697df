from __future__ import annotations

from functools import lru_cache

from jinja2 import Template

from leadwatch.config import CONFIG_DIR


@lru_cache
def _load_template(name: str) -> Template:
    path = CONFIG_DIR / "prompts" / f"{name}.md"
    return Template(path.read_text(encoding="utf-8"))


def load_prompt(name: str, **kwargs) -> str:
    """Load a prompt template from config/prompts/{name}.md and render with kwargs."""
    return _load_template(name).render(**kwargs)
