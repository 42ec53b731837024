"""
Loading analysis templates from YAML/JSON and the bundled built-ins.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Union

import yaml
from loguru import logger
from pydantic import ValidationError

from meeting_analysis.errors import TemplateConfigurationError
from meeting_analysis.models import Template

BUILTIN_DIR = Path(__file__).parent / "builtin_templates"


def template_from_dict(data: Any) -> Template:
    """Build a Template, reporting schema problems as configuration errors."""
    if not isinstance(data, dict):
        raise TemplateConfigurationError("Template must be an object")
    try:
        return Template(**data)
    except ValidationError as e:
        raise TemplateConfigurationError(f"Invalid template: {e}") from e


def load_template(path: Union[str, Path]) -> Template:
    """Load a template from a .yaml/.yml or .json file."""
    path = Path(path)
    with open(path, 'r', encoding='utf-8') as f:
        if path.suffix.lower() == '.json':
            data = json.load(f)
        else:
            data = yaml.safe_load(f)
    template = template_from_dict(data)
    logger.debug(f"Loaded template '{template.name}' ({len(template.sections)} sections) from {path}")
    return template


def list_builtin_templates() -> List[Dict[str, Any]]:
    """Key, name, description and section count of each bundled template."""
    entries = []
    for path in sorted(BUILTIN_DIR.glob("*.yaml")):
        template = load_template(path)
        entries.append({
            "key": path.stem,
            "name": template.name,
            "description": template.description,
            "sections": len(template.sections),
        })
    return entries


def get_builtin_template(key: str) -> Template:
    """Bundled template by key (file stem, e.g. `meeting_minutes`) or display name."""
    normalised = key.strip().lower().replace(" ", "_").replace("-", "_")
    path = BUILTIN_DIR / f"{normalised}.yaml"
    if not path.is_file():
        available = ", ".join(p.stem for p in sorted(BUILTIN_DIR.glob("*.yaml")))
        raise TemplateConfigurationError(f"Unknown built-in template '{key}'. Available: {available}")
    return load_template(path)


def resolve_template(ref: Union[str, Path]) -> Template:
    """A template file path, or the key of a built-in template."""
    path = Path(ref)
    if path.is_file():
        return load_template(path)
    return get_builtin_template(str(ref))
