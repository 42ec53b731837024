"""
API blueprint for the meeting analysis engine.

Endpoints:
- GET  /api/health
- GET  /api/templates
- POST /api/strategy         (strategy recommendation for a transcript)
- POST /api/analyze          (full orchestrated analysis, synchronous)
- POST /api/analyze-section  (single section with transcript evidence)
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Union

from flask import Blueprint, current_app, jsonify, request
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, validator

from meeting_analysis.config import AppConfig
from meeting_analysis.errors import (
    AnalysisCancelledError,
    AnalysisError,
    GenerationError,
    ResponseFormatError,
    TemplateConfigurationError,
)
from meeting_analysis.evidence import analyze_section, ground_quotes
from meeting_analysis.models import AnalysisStrategy, Template, TemplateSection
from meeting_analysis.orchestrator import AnalysisOrchestrator, get_strategy_recommendation
from meeting_analysis.templates import get_builtin_template, list_builtin_templates, template_from_dict
from meeting_analysis.transcript_processor import get_transcript_processor

api_bp = Blueprint("api", __name__)


class AnalyzeRequest(BaseModel):
    template: Union[str, Dict[str, Any]]
    transcript: str
    strategy: Optional[str] = None
    run_evaluation: Optional[bool] = Field(default=None, alias="runEvaluation")

    class Config:
        populate_by_name = True

    @validator("transcript")
    def transcript_not_empty(cls, v):
        if not v or not v.strip():
            raise ValueError("transcript cannot be empty")
        return v

    @validator("strategy")
    def known_strategy(cls, v):
        if v is not None and v.strip().lower() != "auto":
            AnalysisStrategy.parse(v)
        return v


class SectionRequest(BaseModel):
    section: Dict[str, Any]
    transcript: str

    @validator("transcript")
    def transcript_not_empty(cls, v):
        if not v or not v.strip():
            raise ValueError("transcript cannot be empty")
        return v


def _cfg() -> AppConfig:
    return current_app.config["ANALYSIS_CONFIG"]


def _orchestrator() -> AnalysisOrchestrator:
    orchestrator = current_app.config.get("ANALYSIS_ORCHESTRATOR")
    if orchestrator is None:
        orchestrator = AnalysisOrchestrator(config=_cfg())
        current_app.config["ANALYSIS_ORCHESTRATOR"] = orchestrator
    return orchestrator


def _resolve_template(ref: Union[str, Dict[str, Any]]) -> Template:
    if isinstance(ref, str):
        return get_builtin_template(ref)
    return template_from_dict(ref)


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _error(message: str, status: int):
    return jsonify({"ok": False, "error": message}), status


def _analysis_error_response(e: AnalysisError):
    if isinstance(e, TemplateConfigurationError):
        return _error(str(e), 400)
    if isinstance(e, AnalysisCancelledError):
        return _error(str(e), 409)
    if isinstance(e, (GenerationError, ResponseFormatError)):
        logger.error(f"Analysis failed: {e}")
        return _error(str(e), 502)
    return _error(str(e), 400)


@api_bp.get("/health")
def api_health():
    cfg = _cfg()
    return jsonify(
        {
            "ok": True,
            "status": "ok",
            "model": cfg.llm.model,
            "provider": cfg.llm.provider,
            "defaultStrategy": cfg.analysis.default_strategy,
            "runEvaluation": cfg.analysis.run_evaluation,
        }
    )


@api_bp.get("/templates")
def api_templates():
    return jsonify({"ok": True, "templates": list_builtin_templates()})


@api_bp.post("/strategy")
def api_strategy():
    transcript = _json_body().get("transcript")
    if not isinstance(transcript, str) or not transcript.strip():
        return _error("transcript is required", 400)
    recommendation = get_strategy_recommendation(transcript, _orchestrator().llm_client, _cfg())
    metadata = {s.value: AnalysisOrchestrator.strategy_metadata(s) for s in AnalysisStrategy}
    return jsonify({"ok": True, "recommendation": recommendation.to_payload(), "strategies": metadata})


@api_bp.post("/analyze")
def api_analyze():
    """
    Run a full analysis and return the result document.
    """
    try:
        payload = AnalyzeRequest(**_json_body())
    except (ValidationError, ValueError) as e:
        return _error(f"Invalid request: {e}", 400)

    try:
        template = _resolve_template(payload.template)
        result = _orchestrator().analyze_sync(
            template,
            payload.transcript,
            strategy=payload.strategy,
            run_evaluation=payload.run_evaluation,
        )
    except AnalysisError as e:
        return _analysis_error_response(e)

    processed = get_transcript_processor().process(payload.transcript)
    if processed.has_timestamps and result.results.quotes:
        result.results.quotes = ground_quotes(
            result.results.quotes, processed.segments, _cfg().evidence.match_threshold
        )
    return jsonify({"ok": True, "analysis": result.to_payload()})


@api_bp.post("/analyze-section")
def api_analyze_section():
    try:
        payload = SectionRequest(**_json_body())
        section = TemplateSection(**payload.section)
    except (ValidationError, ValueError) as e:
        return _error(f"Invalid request: {e}", 400)

    orchestrator = _orchestrator()
    processed = get_transcript_processor().process(payload.transcript)
    try:
        analysis, usage = asyncio.run(
            analyze_section(section, payload.transcript, processed.segments, orchestrator.llm_client, _cfg())
        )
    except AnalysisError as e:
        return _analysis_error_response(e)
    return jsonify({"ok": True, "section": analysis.to_payload(), "tokenUsage": usage.dict()})
