"""Closed set of search algorithm variants dispatched by the iteration driver."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Literal, Union

from .context import CoordinateSpace
from .linesearch import FiniteIntervalSearch, GoldenSection, ReductionFactor
from .parametric import MeshRun, ParametricRun
from .pattern_search import (
    CoordinateSearch,
    ForcingFunction,
    MeshSettings,
    MultiStart,
    PatternSearch,
)
from .pso import HybridSearch, MeshedParticleSwarm, ParticleSwarm, SwarmSettings
from .results import SearchOutcome

if TYPE_CHECKING:
    from .driver import IterationDriver


@dataclass(frozen=True)
class LineSearchAlgorithm:
    reduction: ReductionFactor = field(default_factory=GoldenSection)
    max_reductions: int | None = None
    abs_df_min: float | None = None
    uncertainty_interval: float | None = None


@dataclass(frozen=True)
class PatternSearchAlgorithm:
    strategy: CoordinateSearch = field(default_factory=CoordinateSearch)
    mesh: MeshSettings = field(default_factory=MeshSettings)
    forcing: ForcingFunction | None = None
    multi_start: MultiStart | None = None
    space: CoordinateSpace = CoordinateSpace.ORIGINAL


@dataclass(frozen=True)
class ParticleSwarmAlgorithm:
    swarm: SwarmSettings = field(default_factory=SwarmSettings)
    mesh: MeshSettings | None = None


@dataclass(frozen=True)
class HybridAlgorithm:
    swarm: SwarmSettings = field(default_factory=SwarmSettings)
    mesh: MeshSettings = field(default_factory=MeshSettings)
    forcing: ForcingFunction | None = None


@dataclass(frozen=True)
class GridAlgorithm:
    layout: Literal["parametric", "mesh", "equidistant_mesh"] = "parametric"
    intervals: Dict[str, int] = field(default_factory=dict)


SearchAlgorithm = Union[
    LineSearchAlgorithm,
    PatternSearchAlgorithm,
    ParticleSwarmAlgorithm,
    HybridAlgorithm,
    GridAlgorithm,
]


def build_engine(driver: "IterationDriver", algorithm: SearchAlgorithm):
    """Instantiate the engine for ``algorithm``; configuration errors surface here."""

    if isinstance(algorithm, LineSearchAlgorithm):
        return FiniteIntervalSearch(
            driver,
            algorithm.reduction,
            max_reductions=algorithm.max_reductions,
            abs_df_min=algorithm.abs_df_min,
            uncertainty_interval=algorithm.uncertainty_interval,
        )
    if isinstance(algorithm, PatternSearchAlgorithm):
        return PatternSearch(
            driver,
            algorithm.strategy,
            algorithm.mesh,
            forcing=algorithm.forcing,
            multi_start=algorithm.multi_start,
            space=algorithm.space,
        )
    if isinstance(algorithm, ParticleSwarmAlgorithm):
        if algorithm.mesh is not None:
            return MeshedParticleSwarm(driver, algorithm.swarm, algorithm.mesh)
        return ParticleSwarm(driver, algorithm.swarm)
    if isinstance(algorithm, HybridAlgorithm):
        return HybridSearch(driver, algorithm.swarm, algorithm.mesh, forcing=algorithm.forcing)
    if isinstance(algorithm, GridAlgorithm):
        if algorithm.layout == "parametric":
            return ParametricRun(driver, algorithm.intervals)
        return MeshRun(driver, algorithm.intervals, equidistant=algorithm.layout == "equidistant_mesh")
    raise TypeError(f"Unsupported algorithm variant: {type(algorithm).__name__}")


def run_algorithm(driver: "IterationDriver", algorithm: SearchAlgorithm) -> SearchOutcome:
    return build_engine(driver, algorithm).run()


__all__ = [
    "GridAlgorithm",
    "HybridAlgorithm",
    "LineSearchAlgorithm",
    "ParticleSwarmAlgorithm",
    "PatternSearchAlgorithm",
    "SearchAlgorithm",
    "build_engine",
    "run_algorithm",
]
