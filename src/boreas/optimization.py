"""Assemble and execute an optimization run from a validated configuration."""
from __future__ import annotations

import logging
from contextlib import ExitStack
from pathlib import Path
from typing import Any, Mapping

from .algorithms import (
    GridAlgorithm,
    HybridAlgorithm,
    LineSearchAlgorithm,
    ParticleSwarmAlgorithm,
    PatternSearchAlgorithm,
    SearchAlgorithm,
)
from .config import GRID_METHODS, LINE_SEARCH_METHODS, PATTERN_SEARCH_METHODS
from .context import CoordinateSpace, SearchContext
from .driver import IterationDriver
from .evaluators import (
    BaseEvaluator,
    InputTemplate,
    ObjectiveLocation,
    SimulationEvaluator,
    load_evaluator,
)
from .linesearch import reduction_factor
from .parameters import ContinuousParameter, DiscreteParameter, ParameterSet
from .pattern_search import ForcingFunction, MeshSettings, MultiStart, search_strategy
from .pso import SwarmSettings
from .results import OptimizationResult, ResultLogger

logger = logging.getLogger(__name__)

_PATTERN_STRATEGIES = {
    "gps_coordinate_search": "coordinate_search",
    "gps_hooke_jeeves": "hooke_jeeves",
}


def build_parameters(section: Mapping[str, Any]) -> ParameterSet:
    continuous = [
        ContinuousParameter(
            name=name,
            initial=spec["initial"],
            step=spec["step"],
            minimum=spec.get("minimum"),
            maximum=spec.get("maximum"),
        )
        for name, spec in (section.get("continuous") or {}).items()
    ]
    discrete = [
        DiscreteParameter(
            name=name,
            values=tuple(spec["values"]),
            initial_index=spec.get("initial_index", 0),
        )
        for name, spec in (section.get("discrete") or {}).items()
    ]
    return ParameterSet(continuous=continuous, discrete=discrete)


def build_evaluator(
    config: Mapping[str, Any],
    objective_names: list[str],
    *,
    working_root: Path | None = None,
) -> BaseEvaluator:
    if config.get("kind", "python") == "python":
        return load_evaluator(config, objective_names)

    root = Path(config["working_root"]) if config.get("working_root") else working_root
    return SimulationEvaluator(
        config["command"],
        [ObjectiveLocation(**dict(output)) for output in config.get("output") or []],
        input_templates=[
            InputTemplate(template=Path(entry["template"]), destination=entry["destination"])
            for entry in config.get("input_templates") or []
        ],
        log_files=config.get("log_files") or [],
        error_indicators=config.get("error_indicators") or [],
        working_root=root,
        environment=config.get("environment") or {},
        timeout_seconds=config.get("timeout_seconds"),
        max_retries=config.get("max_retries", 0),
        nan_policy=config.get("nan_policy"),
    )


def build_mesh(config: Mapping[str, Any]) -> MeshSettings:
    return MeshSettings(
        mesh_size_divider=config.get("mesh_size_divider", 2),
        initial_mesh_size_exponent=config.get("initial_mesh_size_exponent", 0),
        mesh_size_exponent_increment=config.get("mesh_size_exponent_increment", 1),
        max_step_reductions=config.get("max_step_reductions", 4),
    )


def build_swarm(config: Mapping[str, Any]) -> SwarmSettings:
    return SwarmSettings(
        topology=config.get("topology", "gbest"),
        neighborhood_size=config.get("neighborhood_size", 1),
        particles=config.get("particles", 10),
        generations=config.get("generations", 20),
        seed=config.get("seed"),
        cognitive_acceleration=config.get("cognitive_acceleration", 2.8),
        social_acceleration=config.get("social_acceleration", 1.3),
        max_velocity_gain_continuous=config.get("max_velocity_gain_continuous", 0.5),
        max_velocity_discrete=config.get("max_velocity_discrete", 4.0),
        constriction_gain=config.get("constriction_gain", 0.5),
    )


def build_forcing(config: Mapping[str, Any] | None) -> ForcingFunction | None:
    if not config:
        return None
    return ForcingFunction(config["phi"], zeta=config.get("zeta", 0.0), alpha=config.get("alpha"))


def build_algorithm(config: Mapping[str, Any]) -> SearchAlgorithm:
    """Translate the ``algorithm`` section into its tagged variant."""

    main = str(config["main"]).lower()
    if main in LINE_SEARCH_METHODS:
        return LineSearchAlgorithm(
            reduction=reduction_factor(main),
            max_reductions=config.get("max_reductions"),
            abs_df_min=config.get("abs_df_min"),
            uncertainty_interval=config.get("uncertainty_interval"),
        )
    if main in PATTERN_SEARCH_METHODS:
        points = config.get("number_of_initial_points", 1)
        return PatternSearchAlgorithm(
            strategy=search_strategy(_PATTERN_STRATEGIES[main]),
            mesh=build_mesh(config),
            forcing=build_forcing(config.get("forcing")),
            multi_start=MultiStart(seed=config.get("seed"), number_of_initial_points=points)
            if points > 1
            else None,
            space=CoordinateSpace(config.get("space", "original")),
        )
    if main == "pso_cc":
        return ParticleSwarmAlgorithm(swarm=build_swarm(config))
    if main == "pso_cc_mesh":
        return ParticleSwarmAlgorithm(swarm=build_swarm(config), mesh=build_mesh(config))
    if main == "gps_pso_cc_hj":
        return HybridAlgorithm(
            swarm=build_swarm(config),
            mesh=build_mesh(config),
            forcing=build_forcing(config.get("forcing")),
        )
    if main in GRID_METHODS:
        return GridAlgorithm(layout=main, intervals=dict(config.get("intervals") or {}))
    raise ValueError(f"Unsupported algorithm: {main or 'unknown'}")


def ensure_directories(config: Mapping[str, Any]) -> None:
    artifacts = config.get("artifacts") or {}
    log_path = Path(artifacts.get("log_file", "runs/log.csv"))
    log_path.parent.mkdir(parents=True, exist_ok=True)
    run_root = artifacts.get("run_root")
    if run_root:
        Path(run_root).mkdir(parents=True, exist_ok=True)


def run_optimization(config: Mapping[str, Any]) -> OptimizationResult:
    """Execute the configured algorithm and write the result logs."""

    ensure_directories(config)
    artifacts = config.get("artifacts") or {}
    settings = config.get("optimization") or {}
    log_file = Path(artifacts.get("log_file", "runs/log.csv"))
    main_log_file = Path(artifacts.get("main_log_file") or log_file.with_name("main.csv"))
    minimum_log_file = Path(artifacts.get("minimum_log_file") or log_file.with_name("minimum.csv"))
    run_root = Path(artifacts["run_root"]) if artifacts.get("run_root") else log_file.parent

    parameters = build_parameters(config["parameters"])
    objective_names = list(config["objectives"])
    evaluator = build_evaluator(config["evaluator"], objective_names, working_root=run_root / "work")
    algorithm = build_algorithm(config["algorithm"])
    context = SearchContext(
        seed=settings.get("seed"),
        use_step_number=bool(settings.get("use_step_number", False)),
    )
    logger.info(
        "Starting %s with %d continuous and %d discrete parameters",
        config["algorithm"]["main"],
        parameters.dimension_continuous,
        parameters.dimension_discrete,
    )

    with ExitStack() as stack:
        sub_log = stack.enter_context(ResultLogger(log_file, parameters.names, objective_names))
        main_log = stack.enter_context(
            ResultLogger(
                main_log_file,
                parameters.names,
                objective_names,
                minimum_path=minimum_log_file,
                main_iterations_only=True,
            )
        )
        driver = stack.enter_context(
            IterationDriver(
                parameters,
                evaluator,
                context=context,
                workers=settings.get("workers", 1),
                max_iterations=settings.get("max_iterations"),
                max_equal_results=settings.get("max_equal_results", 0),
                reporters=[sub_log, main_log],
                working_root=run_root / "work",
            )
        )
        result = driver.run(algorithm)

    logger.info("Optimization finished with return code %d", result.return_code)
    return result


__all__ = [
    "build_algorithm",
    "build_evaluator",
    "build_parameters",
    "ensure_directories",
    "run_optimization",
]
