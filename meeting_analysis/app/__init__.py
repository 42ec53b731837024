"""
Flask application factory for the meeting analysis HTTP surface.
"""

from __future__ import annotations

from datetime import datetime, timezone

from flask import Flask, jsonify

from meeting_analysis.config import AppConfig, get_config
from meeting_analysis.orchestrator import AnalysisOrchestrator


def create_app(config_object: AppConfig | None = None,
               orchestrator: AnalysisOrchestrator | None = None) -> Flask:
    """
    Flask application factory.

    Pass `orchestrator` to share a preconfigured one (tests inject a fake
    generation client this way).
    """
    cfg = config_object or get_config()
    app = Flask(__name__)

    app.config.update(
        MAX_CONTENT_LENGTH=cfg.web.max_content_length,
        JSON_SORT_KEYS=False,
        ANALYSIS_CONFIG=cfg,
        ANALYSIS_ORCHESTRATOR=orchestrator,
    )

    from .api import api_bp  # defer import until app exists
    app.register_blueprint(api_bp, url_prefix="/api")

    @app.get("/health")
    def health():
        return jsonify(
            {
                "status": "ok",
                "time": datetime.now(timezone.utc).isoformat(),
                "model": cfg.llm.model,
            }
        )

    app.logger.info("App initialized. model=%s strategy=%s", cfg.llm.model, cfg.analysis.default_strategy)
    return app
