"""Configuration schema and validation."""

from __future__ import annotations

from typing import Any, Dict, List, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    ValidationError,
    field_validator,
    model_validator,
)

LINE_SEARCH_METHODS = {"golden_section", "fibonacci"}
PATTERN_SEARCH_METHODS = {"gps_coordinate_search", "gps_hooke_jeeves"}
SWARM_METHODS = {"pso_cc", "pso_cc_mesh"}
HYBRID_METHODS = {"gps_pso_cc_hj"}
GRID_METHODS = {"parametric", "mesh", "equidistant_mesh"}
ALGORITHMS = (
    LINE_SEARCH_METHODS | PATTERN_SEARCH_METHODS | SWARM_METHODS | HYBRID_METHODS | GRID_METHODS
)

_MESH_METHODS = PATTERN_SEARCH_METHODS | HYBRID_METHODS | {"pso_cc_mesh"}
_SWARM_USERS = SWARM_METHODS | HYBRID_METHODS

# Algorithms that read each key of the ``algorithm`` section.
_ALGORITHM_KEYS = {
    "max_reductions": LINE_SEARCH_METHODS,
    "abs_df_min": LINE_SEARCH_METHODS,
    "uncertainty_interval": LINE_SEARCH_METHODS,
    "mesh_size_divider": _MESH_METHODS,
    "initial_mesh_size_exponent": _MESH_METHODS,
    "mesh_size_exponent_increment": _MESH_METHODS,
    "max_step_reductions": _MESH_METHODS,
    "forcing": PATTERN_SEARCH_METHODS | HYBRID_METHODS,
    "number_of_initial_points": PATTERN_SEARCH_METHODS,
    "space": PATTERN_SEARCH_METHODS,
    "topology": _SWARM_USERS,
    "neighborhood_size": _SWARM_USERS,
    "particles": _SWARM_USERS,
    "generations": _SWARM_USERS,
    "cognitive_acceleration": _SWARM_USERS,
    "social_acceleration": _SWARM_USERS,
    "max_velocity_gain_continuous": _SWARM_USERS,
    "max_velocity_discrete": _SWARM_USERS,
    "constriction_gain": _SWARM_USERS,
    "seed": PATTERN_SEARCH_METHODS | _SWARM_USERS,
    "intervals": GRID_METHODS,
}


class MetadataConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    description: str = ""

    @model_validator(mode="after")
    def validate_strings(self) -> "MetadataConfig":
        if not self.name.strip():
            raise ValueError("metadata.name must be a non-empty string")
        return self


# ----------------------------------------------------------------------
# Parameters
# ----------------------------------------------------------------------
class ContinuousParameterConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    initial: float
    step: float
    minimum: float | None = None
    maximum: float | None = None

    @model_validator(mode="after")
    def validate_bounds(self) -> "ContinuousParameterConfig":
        if self.step <= 0:
            raise ValueError("parameters.continuous step must be positive")
        if self.minimum is not None and self.maximum is not None:
            if self.minimum >= self.maximum:
                raise ValueError("parameters.continuous minimum must be smaller than maximum")
        if self.minimum is not None and self.initial < self.minimum:
            raise ValueError("parameters.continuous initial value must not be below minimum")
        if self.maximum is not None and self.initial > self.maximum:
            raise ValueError("parameters.continuous initial value must not exceed maximum")
        return self


class DiscreteParameterConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    values: List[Any]
    initial_index: int = 0

    @model_validator(mode="after")
    def validate_values(self) -> "DiscreteParameterConfig":
        if not self.values:
            raise ValueError("parameters.discrete values must not be empty")
        if not 0 <= self.initial_index < len(self.values):
            raise ValueError("parameters.discrete initial_index must select one of the values")
        return self


class ParametersConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    continuous: Dict[str, ContinuousParameterConfig] = {}
    discrete: Dict[str, DiscreteParameterConfig] = {}

    @model_validator(mode="after")
    def validate_names(self) -> "ParametersConfig":
        if not self.continuous and not self.discrete:
            raise ValueError("parameters must define at least one parameter")
        names = list(self.continuous) + list(self.discrete)
        for name in names:
            if not name.strip():
                raise ValueError("parameter names must be non-empty strings")
        duplicates = sorted(set(self.continuous) & set(self.discrete))
        if duplicates:
            raise ValueError("parameter names must be unique: " + ", ".join(duplicates))
        return self


# ----------------------------------------------------------------------
# Evaluator
# ----------------------------------------------------------------------
class InputTemplateConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    template: str
    destination: str


class OutputConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    file: str
    delimiter: str = ""
    first_character_at: int = 0
    separators: str = ""

    @model_validator(mode="after")
    def validate_fields(self) -> "OutputConfig":
        if not self.file.strip():
            raise ValueError("evaluator.output file must be a non-empty string")
        if self.first_character_at < 0:
            raise ValueError("evaluator.output first_character_at must not be negative")
        if self.first_character_at and not self.delimiter:
            raise ValueError("evaluator.output first_character_at requires a delimiter")
        return self


class EvaluatorConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    kind: Literal["python", "simulation"] = "python"
    module: str | None = None
    callable: str | None = None
    factory: bool = False
    command: str | List[str] | None = None
    input_templates: List[InputTemplateConfig] = []
    output: List[OutputConfig] = []
    error_indicators: List[str] = []
    log_files: List[str] = []
    working_root: str | None = None
    environment: Dict[str, str] = {}
    timeout_seconds: float | None = None
    max_retries: int = 0
    nan_policy: Literal["error", "coerce_to_inf"] = "error"

    @model_validator(mode="after")
    def validate_kind(self) -> "EvaluatorConfig":
        if self.kind == "python":
            if not self.module or not self.module.strip():
                raise ValueError("evaluator.module must be a non-empty string")
            if not self.callable or not self.callable.strip():
                raise ValueError("evaluator.callable must be a non-empty string")
        else:
            if not self.command:
                raise ValueError("evaluator.command is required for simulation evaluators")
            if not self.output:
                raise ValueError("evaluator.output must locate at least one objective")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("evaluator.timeout_seconds must be positive when provided")
        if self.max_retries < 0:
            raise ValueError("evaluator.max_retries must not be negative")
        return self


# ----------------------------------------------------------------------
# Run settings
# ----------------------------------------------------------------------
class OptimizationSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_iterations: int | None = None
    max_equal_results: int = 0
    workers: int = 1
    use_step_number: bool = False
    seed: int | None = None

    @model_validator(mode="after")
    def validate_numbers(self) -> "OptimizationSettings":
        if self.max_iterations is not None and self.max_iterations <= 0:
            raise ValueError("optimization.max_iterations must be positive when provided")
        if self.workers <= 0:
            raise ValueError("optimization.workers must be a positive integer")
        return self


class ArtifactsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    run_root: str | None = None
    log_file: str = "runs/log.csv"
    main_log_file: str | None = None
    minimum_log_file: str | None = None

    @model_validator(mode="after")
    def validate_paths(self) -> "ArtifactsConfig":
        if self.run_root is not None and not self.run_root.strip():
            raise ValueError("artifacts.run_root must be a non-empty string when provided")
        if not self.log_file.strip():
            raise ValueError("artifacts.log_file must be a non-empty string")
        return self


class ForcingFunctionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    phi: str
    zeta: float = 0.0
    alpha: float | None = None

    @model_validator(mode="after")
    def validate_numbers(self) -> "ForcingFunctionConfig":
        if not self.phi.strip():
            raise ValueError("algorithm.forcing.phi must be a non-empty expression")
        if self.zeta < 0:
            raise ValueError("algorithm.forcing.zeta must not be negative")
        if self.alpha is not None and not 0.0 < self.alpha < 1.0:
            raise ValueError("algorithm.forcing.alpha must lie in (0, 1)")
        return self


class AlgorithmConfig(BaseModel):
    """Settings of the selected algorithm.

    One flat model covers every algorithm; keys the selected algorithm does not
    read must keep their defaults.
    """

    model_config = ConfigDict(extra="forbid")

    main: str

    # line search
    max_reductions: int | None = None
    abs_df_min: float | None = None
    uncertainty_interval: float | None = None

    # mesh
    mesh_size_divider: int = 2
    initial_mesh_size_exponent: int = 0
    mesh_size_exponent_increment: int = 1
    max_step_reductions: int = 4
    forcing: ForcingFunctionConfig | None = None
    number_of_initial_points: int = 1
    space: Literal["original", "transformed"] = "original"

    # particle swarm
    topology: Literal["gbest", "lbest", "von_neumann"] = "gbest"
    neighborhood_size: int = 1
    particles: int = 10
    generations: int = 20
    cognitive_acceleration: float = 2.8
    social_acceleration: float = 1.3
    max_velocity_gain_continuous: float = 0.5
    max_velocity_discrete: float = 4.0
    constriction_gain: float = 0.5

    # parametric and mesh runs
    intervals: Dict[str, int] = {}

    seed: int | None = None

    @field_validator("main", mode="before")
    @classmethod
    def normalise_main(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @model_validator(mode="after")
    def validate_algorithm(self) -> "AlgorithmConfig":
        if self.main not in ALGORITHMS:
            raise ValueError("algorithm.main must be one of " + ", ".join(sorted(ALGORITHMS)))
        for name, users in _ALGORITHM_KEYS.items():
            if self.main not in users and getattr(self, name) != type(self).model_fields[name].default:
                raise ValueError(f"algorithm.{name} is not used by algorithm '{self.main}'")
        if self.main in LINE_SEARCH_METHODS:
            self._validate_line_search()
        if self.main in _MESH_METHODS:
            self._validate_mesh()
        if self.main in _SWARM_USERS:
            self._validate_swarm()
        if self.space == "transformed" and self.number_of_initial_points > 1:
            raise ValueError("algorithm.number_of_initial_points requires space 'original'")
        return self

    def _validate_line_search(self) -> None:
        stopping = [
            value
            for value in (self.max_reductions, self.abs_df_min, self.uncertainty_interval)
            if value is not None
        ]
        if len(stopping) > 1:
            raise ValueError(
                "algorithm.max_reductions, abs_df_min and uncertainty_interval are mutually exclusive"
            )
        if self.abs_df_min is not None:
            if self.main == "fibonacci":
                raise ValueError(
                    "algorithm.abs_df_min cannot be specified for the fibonacci algorithm"
                )
            if self.abs_df_min <= 0:
                raise ValueError("algorithm.abs_df_min must be positive")
        if self.uncertainty_interval is not None and not 0.0 < self.uncertainty_interval < 1.0:
            raise ValueError("algorithm.uncertainty_interval must lie in (0, 1)")
        if self.max_reductions is not None and self.max_reductions <= 0:
            raise ValueError("algorithm.max_reductions must be positive")

    def _validate_mesh(self) -> None:
        if self.mesh_size_divider <= 1:
            raise ValueError("algorithm.mesh_size_divider must be greater than 1")
        if self.initial_mesh_size_exponent < 0:
            raise ValueError("algorithm.initial_mesh_size_exponent must not be negative")
        if self.mesh_size_exponent_increment <= 0:
            raise ValueError("algorithm.mesh_size_exponent_increment must be positive")
        if self.max_step_reductions <= 0:
            raise ValueError("algorithm.max_step_reductions must be positive")
        if self.number_of_initial_points < 1:
            raise ValueError("algorithm.number_of_initial_points must be at least 1")

    def _validate_swarm(self) -> None:
        if self.neighborhood_size <= 0:
            raise ValueError("algorithm.neighborhood_size must be positive")
        if self.particles < 2:
            raise ValueError("algorithm.particles must be at least 2")
        if self.generations < 1:
            raise ValueError("algorithm.generations must be at least 1")
        for name in ("cognitive_acceleration", "social_acceleration"):
            if not 0.0 < getattr(self, name) < 4.0:
                raise ValueError(f"algorithm.{name} must lie in (0, 4)")
        if self.max_velocity_discrete <= 0:
            raise ValueError("algorithm.max_velocity_discrete must be positive")
        if not 0.0 < self.constriction_gain <= 1.0:
            raise ValueError("algorithm.constriction_gain must lie in (0, 1]")


class OptimizationConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    metadata: MetadataConfig
    parameters: ParametersConfig
    objectives: List[str]
    evaluator: EvaluatorConfig
    optimization: OptimizationSettings = OptimizationSettings()
    algorithm: AlgorithmConfig
    artifacts: ArtifactsConfig | None = None

    @model_validator(mode="after")
    def validate_all(self) -> "OptimizationConfig":
        if not self.objectives:
            raise ValueError("objectives must contain at least one name")
        lower_seen: set[str] = set()
        for name in self.objectives:
            if not name.strip():
                raise ValueError("objectives entries must be non-empty strings")
            if name.lower() in lower_seen:
                raise ValueError("objectives entries must be unique (case-insensitive)")
            lower_seen.add(name.lower())

        if self.evaluator.kind == "simulation":
            located = [output.name for output in self.evaluator.output]
            if located != list(self.objectives):
                raise ValueError("evaluator.output must list the objectives in the same order")

        main = self.algorithm.main
        continuous = self.parameters.continuous
        discrete = self.parameters.discrete
        if main in LINE_SEARCH_METHODS:
            if len(continuous) != 1 or discrete:
                raise ValueError(f"algorithm '{main}' requires exactly one continuous parameter")
        if main in PATTERN_SEARCH_METHODS:
            if not continuous:
                raise ValueError(f"algorithm '{main}' requires at least one continuous parameter")
            if discrete:
                raise ValueError(f"algorithm '{main}' can only be used with continuous parameters")
        needs_bounds = (
            main in LINE_SEARCH_METHODS
            or main in SWARM_METHODS
            or main in HYBRID_METHODS
            or main in GRID_METHODS
            or self.algorithm.number_of_initial_points > 1
        )
        if needs_bounds:
            for name, spec in continuous.items():
                if spec.minimum is None or spec.maximum is None:
                    raise ValueError(
                        f"parameters.continuous.{name} needs minimum and maximum for algorithm '{main}'"
                    )
        if main in HYBRID_METHODS and not continuous:
            raise ValueError(f"algorithm '{main}' requires at least one continuous parameter")
        if main in GRID_METHODS:
            self._validate_grid(main)
        return self

    def _validate_grid(self, main: str) -> None:
        continuous = self.parameters.continuous
        for name, count in self.algorithm.intervals.items():
            if name not in continuous:
                raise ValueError(f"algorithm.intervals.{name} does not name a continuous parameter")
            if count < 0:
                if main == "equidistant_mesh":
                    raise ValueError(f"algorithm.intervals.{name} must not be negative for '{main}'")
                if continuous[name].minimum <= 0:
                    raise ValueError(
                        f"algorithm.intervals.{name} is logarithmic and needs a positive minimum"
                    )
        if main == "equidistant_mesh" and self.parameters.discrete:
            raise ValueError(f"algorithm '{main}' can only be used with continuous parameters")


__all__ = [
    "ALGORITHMS",
    "AlgorithmConfig",
    "EvaluatorConfig",
    "OptimizationConfig",
    "ParametersConfig",
    "ValidationError",
]
