"""Particle swarm optimization with constriction coefficient and Gray-coded discrete bits."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, List, Sequence

import numpy as np

from .context import CoordinateSpace
from .errors import ConfigurationError
from .pattern_search import HookeJeeves, MeshSettings, PatternSearch
from .point import Point, best_of
from .results import SearchOutcome

if TYPE_CHECKING:
    from .driver import IterationDriver

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Neighborhoods
# ----------------------------------------------------------------------
class Topology(str, Enum):
    GBEST = "gbest"
    LBEST = "lbest"
    VON_NEUMANN = "von_neumann"


def swarm_size(topology: Topology | str, particles: int) -> int:
    """Number of particles actually used; the von Neumann grid needs a perfect square."""

    if Topology(topology) is Topology.VON_NEUMANN:
        side = math.ceil(math.sqrt(particles))
        return side * side
    return particles


def neighborhoods(topology: Topology | str, particles: int, size: int = 1) -> List[List[int]]:
    """Neighbor indices of every particle, each list including the particle itself.

    Parameters
    ----------
    topology:
        Neighborhood rule.
    particles:
        Swarm size; must already be a perfect square for the von Neumann grid.
    size:
        Ring radius of the ``lbest`` topology.
    """

    topology = Topology(topology)
    if topology is Topology.GBEST:
        return [list(range(particles)) for _ in range(particles)]
    if topology is Topology.LBEST:
        return [
            [(i + offset) % particles for offset in range(-size, size + 1)]
            for i in range(particles)
        ]
    side = math.isqrt(particles)
    if side * side != particles:
        raise ConfigurationError(f"von Neumann topology requires a square swarm size, got {particles}")
    result: List[List[int]] = []
    for i in range(particles):
        row, column = divmod(i, side)
        up = ((row - 1) % side) * side + column
        left = row * side + (column - 1) % side
        right = row * side + (column + 1) % side
        down = ((row + 1) % side) * side + column
        result.append([up, left, i, right, down])
    return result


def constriction_factor(cognitive: float, social: float, gain: float) -> float:
    phi = cognitive + social
    if phi > 4.0:
        return 2.0 * gain / abs(2.0 - phi - math.sqrt(phi * (phi - 4.0)))
    return gain


# ----------------------------------------------------------------------
# Gray code
# ----------------------------------------------------------------------
def gray_encode(value: int) -> int:
    return value ^ (value >> 1)


def gray_decode(code: int) -> int:
    value = code
    shift = code >> 1
    while shift:
        value ^= shift
        shift >>= 1
    return value


def bit_length(max_index: int) -> int:
    return max(1, gray_encode(max_index).bit_length())


def index_to_bits(index: int, length: int) -> List[int]:
    """Gray code of ``index`` as ``length`` bits, most significant first."""

    code = gray_encode(index)
    return [(code >> (length - 1 - position)) & 1 for position in range(length)]


def bits_to_index(bits: Sequence[int], max_index: int) -> int:
    code = 0
    for bit in bits:
        code = (code << 1) | int(bit)
    return min(gray_decode(code), max_index)


# ----------------------------------------------------------------------
# Settings
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class SwarmSettings:
    topology: Topology = Topology.GBEST
    neighborhood_size: int = 1
    particles: int = 10
    generations: int = 20
    seed: int | None = None
    cognitive_acceleration: float = 2.8
    social_acceleration: float = 1.3
    max_velocity_gain_continuous: float = 0.5
    max_velocity_discrete: float = 4.0
    constriction_gain: float = 0.5

    def __post_init__(self) -> None:
        object.__setattr__(self, "topology", Topology(self.topology))
        if self.neighborhood_size <= 0:
            raise ConfigurationError("neighborhood_size must be positive")
        if self.particles < 2:
            raise ConfigurationError("particles must be at least 2")
        if self.generations < 1:
            raise ConfigurationError("generations must be at least 1")
        for name in ("cognitive_acceleration", "social_acceleration"):
            value = getattr(self, name)
            if not 0.0 < value < 4.0:
                raise ConfigurationError(f"{name} must lie in (0, 4), got {value}")
        if self.max_velocity_discrete <= 0:
            raise ConfigurationError("max_velocity_discrete must be positive")
        if not 0.0 < self.constriction_gain <= 1.0:
            raise ConfigurationError("constriction_gain must lie in (0, 1]")

    @property
    def constriction(self) -> float:
        return constriction_factor(
            self.cognitive_acceleration, self.social_acceleration, self.constriction_gain
        )


@dataclass
class Particle:
    position: Point
    velocity: np.ndarray
    bit_velocity: List[np.ndarray] = field(default_factory=list)
    best: Point | None = None
    neighborhood_best: Point | None = None


# ----------------------------------------------------------------------
# Engines
# ----------------------------------------------------------------------
class ParticleSwarm:
    """Particle swarm with constriction coefficient (``pso_cc``).

    Every continuous parameter must be bounded. Discrete parameters are moved
    through the bits of the Gray code of their index.
    """

    def __init__(self, driver: "IterationDriver", settings: SwarmSettings) -> None:
        parameters = driver.parameters
        parameters.require_bounded()
        driver.set_space(CoordinateSpace.ORIGINAL)
        if not driver.is_feasible(driver.initial_point()):
            raise ConfigurationError("Initial point is not feasible")
        self.driver = driver
        self.settings = settings
        self.size = swarm_size(settings.topology, settings.particles)
        if self.size != settings.particles:
            logger.info("Swarm size increased to %d for the von Neumann topology", self.size)
        self.neighbors = neighborhoods(settings.topology, self.size, settings.neighborhood_size)
        self.lower = np.array([parameter.minimum for parameter in parameters.continuous], dtype=float)
        self.upper = np.array([parameter.maximum for parameter in parameters.continuous], dtype=float)
        gain = settings.max_velocity_gain_continuous
        self.max_velocity = gain * (self.upper - self.lower) if gain > 0 else None
        self.bit_lengths = [bit_length(parameter.max_index) for parameter in parameters.discrete]

    # Swarm setup -----------------------------------------------------------
    def initial_swarm(self) -> List[Particle]:
        context = self.driver.context
        first = self.driver.initial_point()
        positions = [first]
        for _ in range(1, self.size):
            x = [low + context.uniform() * (high - low) for low, high in zip(self.lower, self.upper)]
            indices = [context.integer(parameter.count) for parameter in self.driver.parameters.discrete]
            positions.append(Point(x=x, indices=indices))
        return [
            Particle(
                position=self.prepare(position),
                velocity=np.zeros(len(self.lower)),
                bit_velocity=[np.zeros(length) for length in self.bit_lengths],
            )
            for position in positions
        ]

    def prepare(self, point: Point) -> Point:
        """Bring a moved particle back into the feasible domain."""

        parameters = self.driver.parameters.continuous
        x = [parameter.reflect(value) for parameter, value in zip(parameters, point.x)]
        return point.with_x(x)

    # Main loop -------------------------------------------------------------
    def run(self) -> SearchOutcome:
        driver = self.driver
        settings = self.settings
        if settings.seed is not None:
            driver.context.reseed(settings.seed)
        swarm = self.initial_swarm()

        for generation in range(1, settings.generations + 1):
            comment = f"Generation {generation}."
            logger.info(comment)
            if driver.context.use_step_number and generation > 1:
                driver.increase_step_number()
                bests = driver.evaluate_all([particle.best for particle in swarm if particle.best is not None])
                for particle, best in zip(swarm, bests):
                    particle.best = best

            evaluated = driver.evaluate_all([particle.position for particle in swarm])
            for particle, position in zip(swarm, evaluated):
                particle.position = position.with_comment(comment)
                driver.report(particle.position)
                driver.report(particle.position, main=True)

            if generation < settings.generations:
                self._update_bests(swarm)
                self._update_neighborhood_bests(swarm)
                self._update_velocities(swarm)
                self._move(swarm)

        candidates = [particle.position for particle in swarm]
        candidates.extend(particle.best for particle in swarm if particle.best is not None)
        best = best_of(point for point in candidates if not point.is_infeasible)
        driver.report_minimum(best)
        return SearchOutcome(
            return_code=1,
            best_point=best,
            details={"particles": self.size, "generations": settings.generations},
        )

    def _update_bests(self, swarm: List[Particle]) -> None:
        for particle in swarm:
            if particle.best is None or particle.position.objective < particle.best.objective:
                particle.best = particle.position

    def _update_neighborhood_bests(self, swarm: List[Particle]) -> None:
        for i, particle in enumerate(swarm):
            particle.neighborhood_best = best_of(swarm[j].best for j in self.neighbors[i])

    def _update_velocities(self, swarm: List[Particle]) -> None:
        context = self.driver.context
        settings = self.settings
        rho1 = settings.cognitive_acceleration * context.uniform()
        rho2 = settings.social_acceleration * context.uniform()
        chi = settings.constriction
        parameters = self.driver.parameters.discrete
        for particle in swarm:
            assert particle.best is not None and particle.neighborhood_best is not None
            x = np.asarray(particle.position.x)
            personal = np.asarray(particle.best.x)
            social = np.asarray(particle.neighborhood_best.x)
            velocity = chi * (particle.velocity + rho1 * (personal - x) + rho2 * (social - x))
            if self.max_velocity is not None:
                velocity = np.clip(velocity, -self.max_velocity, self.max_velocity)
            particle.velocity = velocity

            for k, parameter in enumerate(parameters):
                length = self.bit_lengths[k]
                bits = np.array(index_to_bits(particle.position.indices[k], length))
                personal_bits = np.array(index_to_bits(particle.best.indices[k], length))
                social_bits = np.array(index_to_bits(particle.neighborhood_best.indices[k], length))
                bit_velocity = (
                    particle.bit_velocity[k]
                    + rho1 * (personal_bits - bits)
                    + rho2 * (social_bits - bits)
                )
                limit = settings.max_velocity_discrete
                particle.bit_velocity[k] = np.clip(bit_velocity, -limit, limit)

    def _move(self, swarm: List[Particle]) -> None:
        context = self.driver.context
        parameters = self.driver.parameters.discrete
        for particle in swarm:
            x = np.asarray(particle.position.x) + particle.velocity
            indices = []
            for k, parameter in enumerate(parameters):
                bits = [
                    1 if context.uniform() < 1.0 / (1.0 + math.exp(-velocity)) else 0
                    for velocity in particle.bit_velocity[k]
                ]
                indices.append(bits_to_index(bits, parameter.max_index))
            moved = particle.position.with_x(x).with_indices(indices)
            particle.position = self.prepare(moved)


class MeshedParticleSwarm(ParticleSwarm):
    """Particle swarm whose continuous coordinates are restricted to a mesh (``pso_cc_mesh``)."""

    def __init__(self, driver: "IterationDriver", settings: SwarmSettings, mesh: MeshSettings) -> None:
        super().__init__(driver, settings)
        self.mesh = mesh
        steps = np.array([parameter.step for parameter in driver.parameters.continuous], dtype=float)
        self.spacing = mesh.mesh_size(mesh.initial_mesh_size_exponent) * steps
        for parameter, spacing in zip(driver.parameters.continuous, self.spacing):
            if spacing > parameter.width:
                raise ConfigurationError(
                    f"Mesh spacing {spacing} of parameter '{parameter.name}' exceeds its domain width "
                    f"{parameter.width}; increase the initial mesh size exponent"
                )
        self.origin = np.asarray(driver.initial_point().x, dtype=float)

    def prepare(self, point: Point) -> Point:
        reflected = super().prepare(point)
        x = np.asarray(reflected.x, dtype=float)
        x = self.origin + np.rint((x - self.origin) / self.spacing) * self.spacing
        # Snapping may leave the domain by at most one mesh step.
        x = np.where(x < self.lower, x + self.spacing, x)
        x = np.where(x > self.upper, x - self.spacing, x)
        return reflected.with_x(x)


class HybridSearch:
    """Meshed particle swarm followed by Hooke-Jeeves from its best point (``gps_pso_cc_hj``)."""

    def __init__(
        self,
        driver: "IterationDriver",
        settings: SwarmSettings,
        mesh: MeshSettings,
        **pattern_options,
    ) -> None:
        self.driver = driver
        self.swarm = MeshedParticleSwarm(driver, settings, mesh)
        self.mesh = mesh
        self.pattern_options = pattern_options

    def run(self) -> SearchOutcome:
        driver = self.driver
        swarm_outcome = self.swarm.run()
        start = swarm_outcome.best_point
        if start is None:
            return swarm_outcome
        start = start.with_comment("Minimum point of initialization.")
        driver.report(start)
        driver.report(start, main=True)

        pattern = PatternSearch(driver, HookeJeeves(), self.mesh, hold_discrete=True, **self.pattern_options)
        outcome = pattern.run(start)
        details = {"swarm_" + key: value for key, value in swarm_outcome.details.items()}
        details.update(outcome.details)
        return SearchOutcome(return_code=outcome.return_code, best_point=outcome.best_point, details=details)


__all__ = [
    "HybridSearch",
    "MeshedParticleSwarm",
    "Particle",
    "ParticleSwarm",
    "SwarmSettings",
    "Topology",
    "bit_length",
    "bits_to_index",
    "constriction_factor",
    "gray_decode",
    "gray_encode",
    "index_to_bits",
    "neighborhoods",
    "swarm_size",
]
