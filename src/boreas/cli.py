"""Command line interface for the Boreas optimizer."""
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any, Dict, Sequence

import yaml
from pydantic import ValidationError

from .config import OptimizationConfig
from .errors import BoreasError, UserAbort
from .results import format_result
from .run_management import prepare_run_environment
from .visualization import VisualizationError, plot_history, plot_parameters


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run a derivative-free optimization or inspect its configuration."
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("boreas.yaml"),
        help="Path to the optimization configuration YAML file.",
    )
    parser.add_argument(
        "--as-json",
        action="store_true",
        help="Print the validated configuration as JSON for downstream tooling.",
    )
    parser.add_argument(
        "--summarize",
        action="store_true",
        help="Only print a summary of the configuration without running the optimization.",
    )
    _add_runs_root_argument(parser)
    parser.add_argument(
        "--log-level",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        default="INFO",
        help="Logging verbosity (default: INFO).",
    )
    subparsers = parser.add_subparsers(dest="command")
    _configure_visualize_subcommand(subparsers)
    return parser.parse_args(argv)


def load_config(path: Path) -> OptimizationConfig:
    if not path.exists():
        raise SystemExit(f"Configuration file not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)

    if not isinstance(data, dict):
        raise SystemExit("Configuration root must be a mapping (YAML dictionary).")

    try:
        validated = OptimizationConfig.model_validate(data)
    except ValidationError as exc:
        details = []
        for error in exc.errors(include_url=False):
            location = ".".join(str(loc) for loc in error["loc"])
            details.append(f"- {location or '<root>'}: {error['msg']}")
        message = "Configuration validation failed:\n" + "\n".join(details)
        raise SystemExit(message) from exc

    return validated


def _add_runs_root_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--runs-root",
        type=Path,
        default=Path("runs"),
        help="Directory that stores run artifacts (default: runs).",
    )


def _configure_visualize_subcommand(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser] | None,
) -> None:
    if subparsers is None:
        return

    visualize_parser = subparsers.add_parser(
        "visualize",
        help="Render quick visualizations of a result log.",
        description="Render quick visualizations of a result log.",
    )
    _add_runs_root_argument(visualize_parser)
    source = visualize_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--log", type=Path, help="Result log CSV file to plot.")
    source.add_argument("--run-id", help="Run identifier below --runs-root to plot.")
    visualize_parser.add_argument(
        "--type",
        choices=("history", "parameters"),
        default="history",
        help="Visualization type to render (default: history).",
    )
    visualize_parser.add_argument(
        "--column",
        action="append",
        dest="columns",
        metavar="NAME",
        help="Objective or parameter name to include (repeatable).",
    )
    visualize_parser.add_argument(
        "--output",
        type=Path,
        help="Optional output path for the rendered image (default: next to the log).",
    )
    visualize_parser.add_argument(
        "--title",
        help="Optional title override for the generated plot.",
    )


def summarize_config(config: Dict[str, Any]) -> str:
    metadata = config.get("metadata", {})
    parameters = config.get("parameters", {})
    settings = config.get("optimization", {})
    algorithm = config.get("algorithm", {})
    evaluator = config.get("evaluator", {})

    continuous = ", ".join(parameters.get("continuous", {})) or "N/A"
    discrete = ", ".join(parameters.get("discrete", {})) or "N/A"
    objectives = ", ".join(config.get("objectives", [])) or "N/A"

    lines = [
        f"Experiment name : {metadata.get('name', 'N/A')}",
        f"Description    : {metadata.get('description') or 'N/A'}",
        "",
        "[Problem]",
        f"  Continuous   : {continuous}",
        f"  Discrete     : {discrete}",
        f"  Objectives   : {objectives}",
        f"  Evaluator    : {evaluator.get('kind', 'N/A')}",
        "",
        "[Algorithm]",
        f"  Main         : {algorithm.get('main', 'N/A')}",
        "",
        "[Optimization]",
        f"  max_iterations    : {settings.get('max_iterations') or 'unlimited'}",
        f"  max_equal_results : {settings.get('max_equal_results', 0)}",
        f"  workers           : {settings.get('workers', 1)}",
        f"  use_step_number   : {'yes' if settings.get('use_step_number') else 'no'}",
    ]
    return "\n".join(lines)


def _handle_visualize_command(args: argparse.Namespace) -> None:
    if args.log is not None:
        log_path = args.log
    else:
        log_path = args.runs_root / args.run_id / "log.csv"
        if not log_path.exists():
            raise SystemExit(f"Run '{args.run_id}' not found under {args.runs_root}")

    columns = getattr(args, "columns", None) or None
    try:
        if args.type == "parameters":
            result_path = plot_parameters(log_path, columns, title=args.title, output_path=args.output)
        else:
            result_path = plot_history(log_path, columns, title=args.title, output_path=args.output)
    except VisualizationError as exc:
        raise SystemExit(str(exc)) from exc

    print(f"Visualization written to {result_path}")


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if getattr(args, "command", None) == "visualize":
        _handle_visualize_command(args)
        return

    config_model = load_config(args.config)
    config = config_model.model_dump(mode="python")

    if args.as_json:
        print(json.dumps(config, indent=2, ensure_ascii=False))
        return

    if args.summarize:
        print(summarize_config(config))
        return

    from .optimization import run_optimization

    config_for_run, artifacts = prepare_run_environment(
        config_model=config_model,
        config_source=args.config,
        runs_root=args.runs_root,
    )

    try:
        result = run_optimization(config_for_run)
    except UserAbort as exc:
        raise SystemExit(str(exc)) from exc
    except BoreasError as exc:
        raise SystemExit(f"Optimization failed: {exc}") from exc
    print(format_result(result, config_model.objectives))
    print(f"Run directory: {artifacts.run_dir}")


if __name__ == "__main__":
    main()
