"""Static plots generated from result logs."""
from __future__ import annotations

from pathlib import Path
from typing import Sequence

import matplotlib

# Force a non-interactive backend to support headless environments (tests/CI).
matplotlib.use("Agg", force=True)
import matplotlib.pyplot as plt
import pandas as pd

from .point import INFEASIBLE_VALUE

_RESERVED_COLUMNS = {"simulation", "main_iteration", "sub_iteration", "step_number", "comment"}


class VisualizationError(RuntimeError):
    """Raised when a visualization cannot be generated."""


def objective_columns(df: pd.DataFrame) -> list[str]:
    return [column for column in df.columns if str(column).startswith("f_")]


def parameter_columns(df: pd.DataFrame) -> list[str]:
    return [
        column
        for column in df.columns
        if column not in _RESERVED_COLUMNS and not str(column).startswith("f_")
    ]


def plot_history(
    log_path: Path | str,
    objectives: Sequence[str] | None = None,
    *,
    title: str | None = None,
    output_path: Path | str | None = None,
) -> Path:
    """Plot the running minimum of each objective against the simulation number."""

    log_path = Path(log_path)
    df = _read_log(log_path)
    columns = [f"f_{name}" for name in objectives] if objectives else objective_columns(df)
    if not columns:
        raise VisualizationError(f"Log file {log_path} does not contain objective columns")
    missing = [column for column in columns if column not in df.columns]
    if missing:
        raise VisualizationError(
            f"Log file {log_path} does not contain required objective columns: {', '.join(missing)}"
        )

    df = _sorted_by_simulation(df)
    fig, ax = plt.subplots(figsize=(6, 4))
    for column in columns:
        series = pd.to_numeric(df[column], errors="coerce")
        series = series.where(series < INFEASIBLE_VALUE)
        ax.plot(df["simulation"].to_list(), _running_minimum(series), label=column[2:])

    ax.set_xlabel("Simulation")
    ax.set_ylabel("Best value")
    ax.set_title(title or "Best value history")
    ax.grid(True, linestyle=":", linewidth=0.5)
    ax.legend()
    fig.tight_layout()

    output = _resolve_output_path(log_path, output_path, suffix="history")
    fig.savefig(output)
    plt.close(fig)
    return output


def plot_parameters(
    log_path: Path | str,
    parameters: Sequence[str] | None = None,
    *,
    title: str | None = None,
    output_path: Path | str | None = None,
) -> Path:
    """Plot the trace of each numeric parameter, one panel per parameter."""

    log_path = Path(log_path)
    df = _sorted_by_simulation(_read_log(log_path))
    names = list(parameters) if parameters else parameter_columns(df)
    missing = [name for name in names if name not in df.columns]
    if missing:
        raise VisualizationError(
            f"Log file {log_path} does not contain parameter columns: {', '.join(missing)}"
        )
    numeric = [name for name in names if pd.to_numeric(df[name], errors="coerce").notna().any()]
    if not numeric:
        raise VisualizationError(f"Log file {log_path} does not contain numeric parameter values")

    fig, axes = plt.subplots(len(numeric), 1, figsize=(6, 2.2 * len(numeric)), sharex=True, squeeze=False)
    for ax, name in zip(axes[:, 0], numeric):
        ax.plot(df["simulation"].to_list(), pd.to_numeric(df[name], errors="coerce"), marker=".", linewidth=0.8)
        ax.set_ylabel(name)
        ax.grid(True, linestyle=":", linewidth=0.5)
    axes[-1, 0].set_xlabel("Simulation")
    axes[0, 0].set_title(title or "Parameter trace")
    fig.tight_layout()

    output = _resolve_output_path(log_path, output_path, suffix="parameters")
    fig.savefig(output)
    plt.close(fig)
    return output


def _read_log(path: Path) -> pd.DataFrame:
    if not path.exists():
        raise VisualizationError(f"Log file not found: {path}")
    try:
        df = pd.read_csv(path)
    except pd.errors.EmptyDataError as exc:  # type: ignore[attr-defined]
        raise VisualizationError(f"Log file is empty: {path}") from exc
    if df.empty:
        raise VisualizationError(f"Log file does not contain any rows: {path}")
    return df


def _sorted_by_simulation(df: pd.DataFrame) -> pd.DataFrame:
    if "simulation" in df.columns:
        return df.sort_values("simulation", kind="stable")
    return df.reset_index(drop=False).rename(columns={"index": "simulation"})


def _running_minimum(series: pd.Series) -> list[float]:
    values: list[float] = []
    best: float | None = None
    for value in series:
        if pd.isna(value):
            values.append(float("nan") if best is None else best)
            continue
        best = float(value) if best is None else min(best, float(value))
        values.append(best)
    return values


def _resolve_output_path(log_path: Path, output_path: Path | str | None, *, suffix: str) -> Path:
    if output_path is not None:
        return Path(output_path)
    return log_path.parent / f"{log_path.stem}_{suffix}.png"


__all__ = [
    "VisualizationError",
    "objective_columns",
    "parameter_columns",
    "plot_history",
    "plot_parameters",
]
