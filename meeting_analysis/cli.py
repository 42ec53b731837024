"""
Command-line entry point: `meeting-analysis analyze|recommend|templates|serve`.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger

from meeting_analysis.config import AppConfig, get_config
from meeting_analysis.errors import AnalysisError
from meeting_analysis.evaluator import quality_band
from meeting_analysis.orchestrator import AnalysisOrchestrator, get_strategy_recommendation
from meeting_analysis.templates import list_builtin_templates, resolve_template

LOG_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{message}</cyan>"


def _configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)


def _load_config(path: Optional[str]) -> AppConfig:
    if path:
        return AppConfig.from_yaml(Path(path))
    return get_config()


def _read_transcript(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def _print_progress(current: int, total: int, label: str) -> None:
    print(f"[{current}/{total}] {label}", file=sys.stderr)


def cmd_analyze(args: argparse.Namespace) -> int:
    cfg = _load_config(args.config)
    template = resolve_template(args.template)
    transcript = _read_transcript(args.transcript)

    orchestrator = AnalysisOrchestrator(config=cfg)
    result = orchestrator.analyze_sync(
        template,
        transcript,
        strategy=args.strategy,
        run_evaluation=False if args.no_evaluation else None,
        progress_callback=_print_progress,
    )

    output = json.dumps(result.to_payload(), indent=2, ensure_ascii=False, default=str)
    if args.output:
        Path(args.output).write_text(output, encoding="utf-8")
        logger.info(f"Wrote analysis to {args.output}")
    else:
        print(output)

    meta = result.metadata
    summary = (
        f"{result.strategy.value}: {meta.actual_api_calls} call(s), "
        f"{meta.actual_tokens} tokens, {meta.processing_time:.1f}s"
    )
    if result.evaluation is not None:
        score = result.evaluation.quality_score
        summary += f", quality {score:g}/10 ({quality_band(score)})"
    print(summary, file=sys.stderr)
    for warning in result.integrity_warnings:
        print(f"warning: {warning}", file=sys.stderr)
    return 0


def cmd_recommend(args: argparse.Namespace) -> int:
    cfg = _load_config(args.config)
    transcript = _read_transcript(args.transcript)
    orchestrator = AnalysisOrchestrator(config=cfg)
    rec = get_strategy_recommendation(transcript, orchestrator.llm_client, cfg)
    print(f"Recommended strategy: {rec.strategy.value} (~{rec.estimated_tokens} tokens)")
    for name, reason in rec.reasons.items():
        meta = AnalysisOrchestrator.strategy_metadata(name)
        print(f"  {name:<10} {meta['estimatedDuration']:<14} {reason}")
    return 0


def cmd_templates(args: argparse.Namespace) -> int:
    for entry in list_builtin_templates():
        print(f"{entry['key']:<24} {entry['name']} ({entry['sections']} sections)")
        if entry.get("description"):
            print(f"{'':<24} {entry['description']}")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    from meeting_analysis.app import create_app

    cfg = _load_config(args.config)
    app = create_app(cfg)
    app.run(host=args.host or cfg.web.host, port=args.port or cfg.web.port, debug=cfg.web.debug)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="meeting-analysis", description="Template-driven meeting transcript analysis")
    parser.add_argument("--config", help="YAML configuration file (defaults to environment)")
    parser.add_argument("--log-level", default="INFO", help="Log level for stderr output")
    sub = parser.add_subparsers(dest="command", required=True)

    analyze = sub.add_parser("analyze", help="Analyze a transcript")
    analyze.add_argument("--template", required=True, help="Template file or built-in key")
    analyze.add_argument("--transcript", required=True, help="Transcript file, or - for stdin")
    analyze.add_argument("--strategy", default=None, help="basic | batched | cascading | auto")
    analyze.add_argument("--no-evaluation", action="store_true", help="Skip the self-evaluation pass")
    analyze.add_argument("--output", help="Write JSON result here instead of stdout")
    analyze.set_defaults(func=cmd_analyze)

    recommend = sub.add_parser("recommend", help="Recommend a strategy for a transcript")
    recommend.add_argument("--transcript", required=True, help="Transcript file, or - for stdin")
    recommend.set_defaults(func=cmd_recommend)

    templates = sub.add_parser("templates", help="List built-in templates")
    templates.set_defaults(func=cmd_templates)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.set_defaults(func=cmd_serve)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.log_level)
    try:
        return args.func(args)
    except AnalysisError as e:
        logger.error(str(e))
        print(f"error: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        logger.error(f"File error: {e}")
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
