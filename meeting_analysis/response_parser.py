"""
Shape validation for parsed model responses.

Required string fields must be strings, optional fields must be arrays or
strings when present. Nothing is coerced or replaced with empty data.
"""

from collections import Counter
from typing import Any, Dict, List, Optional, Sequence, Type

from loguru import logger
from pydantic import BaseModel, ValidationError

from meeting_analysis.errors import ResponseShapeError
from meeting_analysis.models import (
    ActionItem,
    AgendaItem,
    AnalysisResults,
    AnalysisSection,
    Decision,
    Quote,
)

# Wire key -> (model, AnalysisResults attribute)
ENTITY_FIELDS: Dict[str, tuple] = {
    "agendaItems": (AgendaItem, "agenda_items"),
    "decisions": (Decision, "decisions"),
    "actionItems": (ActionItem, "action_items"),
    "quotes": (Quote, "quotes"),
}


def _type_name(value: Any) -> str:
    return "null" if value is None else type(value).__name__


def _first_error(error: ValidationError) -> str:
    err = error.errors()[0]
    loc = ".".join(str(part) for part in err.get("loc", ()))
    return f"{loc}: {err.get('msg')}" if loc else str(err.get("msg"))


def _parse_items(key: str, value: Any, model: Type[BaseModel], label: str) -> List[BaseModel]:
    if not isinstance(value, list):
        raise ResponseShapeError(f'"{key}" in {label} must be an array, got {_type_name(value)}', label)
    items = []
    for index, raw in enumerate(value):
        if not isinstance(raw, dict):
            raise ResponseShapeError(
                f'"{key}[{index}]" in {label} must be an object, got {_type_name(raw)}', label
            )
        try:
            items.append(model(**raw))
        except ValidationError as e:
            raise ResponseShapeError(f'Invalid "{key}[{index}]" in {label}: {_first_error(e)}', label) from e
    return items


def parse_optional_fields(data: Dict[str, Any], label: str) -> Dict[str, Any]:
    """Validate `summary` and the entity arrays, returning AnalysisResults kwargs."""
    fields: Dict[str, Any] = {}
    summary = data.get("summary")
    if summary is not None:
        if not isinstance(summary, str):
            raise ResponseShapeError(f'"summary" in {label} must be a string, got {_type_name(summary)}', label)
        if summary.strip():
            fields["summary"] = summary.strip()

    for key, (model, attr) in ENTITY_FIELDS.items():
        if data.get(key) is not None:
            fields[attr] = _parse_items(key, data[key], model, label)
    return fields


def _parse_section(raw: Any, index: int, label: str) -> AnalysisSection:
    if not isinstance(raw, dict):
        raise ResponseShapeError(f'"sections[{index}]" in {label} must be an object, got {_type_name(raw)}', label)
    name, content = raw.get("name"), raw.get("content")
    if not isinstance(name, str) or not name.strip():
        raise ResponseShapeError(f'"sections[{index}].name" in {label} must be a non-empty string', label)
    if not isinstance(content, str):
        raise ResponseShapeError(
            f'"sections[{index}].content" ({name}) in {label} must be a string, got {_type_name(content)}', label
        )
    return AnalysisSection(name=name.strip(), content=content.strip())


def _normalise_name(name: str) -> str:
    return " ".join(name.lower().split())


def parse_sections_response(data: Dict[str, Any], label: str,
                            expected_names: Optional[Sequence[str]] = None) -> AnalysisResults:
    """
    Validate a `{"sections": [...], ...}` response from a monolithic or batch call.

    When `expected_names` is given, returned sections are matched to them
    (case and whitespace insensitive), renamed to the exact template name and
    put in template order. A name the template repeats is matched by position.
    Unknown or surplus sections are dropped with a warning; a missing section
    is an error.
    """
    sections_raw = data.get("sections")
    if not isinstance(sections_raw, list):
        raise ResponseShapeError(
            f'"sections" in {label} must be an array, got {_type_name(sections_raw)}', label
        )
    parsed = [_parse_section(raw, i, label) for i, raw in enumerate(sections_raw)]

    if expected_names is not None:
        # Names may repeat in a template; repeats are matched in order of appearance
        by_name: Dict[str, List[AnalysisSection]] = {}
        for section in parsed:
            by_name.setdefault(_normalise_name(section.name), []).append(section)
        wanted = Counter(_normalise_name(n) for n in expected_names)
        for key, sections in by_name.items():
            if key not in wanted:
                logger.warning(f'Ignoring unexpected section "{sections[0].name}" in {label}')
            elif len(sections) > wanted[key]:
                logger.warning(
                    f'Duplicate section "{sections[0].name}" in {label}; keeping the first {wanted[key]}'
                )
        missing: List[str] = []
        for name in expected_names:
            key = _normalise_name(name)
            if len(by_name.get(key, [])) < wanted[key] and name not in missing:
                missing.append(name)
        if missing:
            raise ResponseShapeError(
                f"Response for {label} is missing sections: {', '.join(missing)}", label
            )
        parsed = [
            AnalysisSection(name=name, content=by_name[_normalise_name(name)].pop(0).content)
            for name in expected_names
        ]

    return AnalysisResults(sections=parsed, **parse_optional_fields(data, label))


def parse_section_response(data: Dict[str, Any], section_name: str, label: str) -> AnalysisResults:
    """Validate a `{"content": "...", ...}` response from one cascading section call."""
    content = data.get("content")
    if not isinstance(content, str):
        raise ResponseShapeError(f'"content" in {label} must be a string, got {_type_name(content)}', label)
    section = AnalysisSection(name=section_name, content=content.strip())
    return AnalysisResults(sections=[section], **parse_optional_fields(data, label))


def parse_results_payload(data: Any, label: str,
                          expected_names: Optional[Sequence[str]] = None) -> AnalysisResults:
    """Validate a complete AnalysisResults object (used for `finalResults`)."""
    if not isinstance(data, dict):
        raise ResponseShapeError(f"{label} must be an object, got {_type_name(data)}", label)
    return parse_sections_response(data, label, expected_names)
