# prompt_renderer.py
"""Render generation prompts from Jinja2 templates."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined
from pydantic import BaseModel

if TYPE_CHECKING:  # pragma: no cover - type hints
    from context_assembly.context_models import AssembledContext
    from models.narrative_models import Blueprint

PROMPTS_PATH = Path(__file__).parent / "prompts"
UNIT_GENERATION_TEMPLATE = "unit_generation.j2"

_env = Environment(
    loader=FileSystemLoader(PROMPTS_PATH),
    autoescape=False,
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
)


def _default_json_serializer(value: Any) -> Any:
    """Serialize pydantic models and sets for JSON output."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", exclude_none=True)
    if isinstance(value, set | frozenset):
        return sorted(value)
    raise TypeError(
        f"Object of type {value.__class__.__name__} is not JSON serializable"
    )


def _tojson(value: Any, indent: int | None = None) -> str:
    return json.dumps(value, default=_default_json_serializer, indent=indent)


_env.filters["tojson"] = _tojson


def render_prompt(template_name: str, context: dict[str, Any]) -> str:
    """Render a Jinja2 template from the prompts directory."""
    template = _env.get_template(template_name)
    return template.render(**context)


def render_generation_prompt(
    context: AssembledContext, blueprint: Blueprint
) -> str:
    """Prompt text for one unit: assembled memory plus the blueprint contract."""
    return render_prompt(
        UNIT_GENERATION_TEMPLATE,
        {
            "context": context,
            "blueprint": blueprint,
            "entities": sorted(context.entities.values(), key=lambda p: p.name),
            "expected_entities": sorted(blueprint.expected_entities),
        },
    )
