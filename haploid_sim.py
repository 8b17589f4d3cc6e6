"""
Haploid Selection Simulation Module

Deterministic one-locus, two-allele haploid selection: allele frequency,
mean fitness, and per-generation change, plus fixation detection and
diagnostic plots.

Supports:
- Arbitrary non-negative fitnesses for the two alleles
- Fixation detection against a near-fixation threshold
- Four-panel diagnostic figure (w̄, p, phase plot, Δp)
- Side-by-side comparison of several parameter scenarios

Nomenclature:
- p: frequency of allele 1 (the favored/new allele); 1 - p is allele 2
- w1, w2: fitnesses of allele 1 and allele 2
- w_bar: mean population fitness, p*w1 + (1 - p)*w2
- delta_p: change in p from the previous generation
- generations are numbered from 1 (p[1] = p0)
"""

import argparse
import logging
import math
import numbers
import sys
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import matplotlib.pyplot as plt


LOG = logging.getLogger(__name__)


# =============================================================================
# Color Schemes
# =============================================================================

COLORS = {
    'p': '#1f78b4',       # blue
    'w_bar': '#333333',   # dark gray
    'phase': '#ff7f00',   # orange
    'delta_p': '#2ca02c', # green
}

COLOR_FIXATION = '#e31a1c'  # red
COLOR_GUIDE = '#888888'


# =============================================================================
# Constants and Errors
# =============================================================================

FIXATION_THRESHOLD = 0.9999


class HaploidSelectionError(Exception):
    """Base class for simulator errors."""


class InvalidConfigError(HaploidSelectionError, ValueError):
    """Raised when simulation parameters are out of range."""


class DivisionByZeroError(HaploidSelectionError, ZeroDivisionError):
    """Raised when mean population fitness is exactly zero."""

    def __init__(self, generation: int, params: 'HaploidParams'):
        self.generation = generation
        self.params = params
        super().__init__(
            f"mean fitness is zero at generation {generation} "
            f"(p0={params.p0}, w1={params.w1}, w2={params.w2}, "
            f"n={params.n_generations})"
        )


# =============================================================================
# Parameters
# =============================================================================

@dataclass(frozen=True)
class HaploidParams:
    """
    Parameters for the deterministic haploid selection model.

    Attributes
    ----------
    p0 : float
        Initial frequency of allele 1, in [0, 1].
    w1 : float
        Fitness of allele 1 (non-negative).
    w2 : float
        Fitness of allele 2 (non-negative).
    n_generations : int
        Length of the trajectory, counting the initial generation (>= 1).
    """
    p0: float = 0.01
    w1: float = 1.0
    w2: float = 0.9
    n_generations: int = 100

    def __post_init__(self):
        if not isinstance(self.p0, numbers.Real) or not (0.0 <= self.p0 <= 1.0):
            raise InvalidConfigError(f"p0 must be in [0, 1] (got {self.p0})")
        for name in ('w1', 'w2'):
            w = getattr(self, name)
            if not isinstance(w, numbers.Real) or not math.isfinite(w) or w < 0:
                raise InvalidConfigError(
                    f"{name} must be a finite non-negative number (got {w})"
                )
        n = self.n_generations
        if isinstance(n, bool) or not isinstance(n, numbers.Integral):
            raise InvalidConfigError(
                f"n_generations must be an integer (got {n!r})"
            )
        if n < 1:
            raise InvalidConfigError(f"n_generations must be >= 1 (got {n})")

    def mean_fitness(self, p: float) -> float:
        return p * self.w1 + (1 - p) * self.w2


PRESETS: Dict[str, HaploidParams] = {
    'basic': HaploidParams(p0=0.01, w1=1.0, w2=0.9, n_generations=100),
    'extended': HaploidParams(p0=0.0001, w1=1.0, w2=0.987, n_generations=1000),
}


# =============================================================================
# Results
# =============================================================================

def _frozen(values: List[float]) -> np.ndarray:
    arr = np.array(values, dtype=float)
    arr.flags.writeable = False
    return arr


@dataclass(frozen=True, eq=False)
class HaploidTrajectory:
    """
    Results from a deterministic haploid selection simulation.

    All arrays have length ``params.n_generations`` and are read-only.

    Attributes
    ----------
    params : HaploidParams
    generations : ndarray of int
        Generation numbers, 1..n.
    p : ndarray
        Frequency of allele 1 per generation.
    w_bar : ndarray
        Mean population fitness per generation.
    delta_p : ndarray
        p[i] - p[i-1]; zero for the first generation.
    """
    params: HaploidParams
    generations: np.ndarray
    p: np.ndarray
    w_bar: np.ndarray
    delta_p: np.ndarray

    def __len__(self) -> int:
        return len(self.p)

    def phase_pairs(self) -> Tuple[np.ndarray, np.ndarray]:
        """(p[t], p[t+1]) for t = 1..n-1."""
        return self.p[:-1], self.p[1:]

    def series(self) -> Dict[str, Tuple[np.ndarray, np.ndarray]]:
        """The four named (x, y) series drawn by the diagnostic plots."""
        return {
            'w_bar': (self.generations, self.w_bar),
            'p': (self.generations, self.p),
            'phase': self.phase_pairs(),
            'delta_p': (self.generations[1:], self.delta_p[1:]),
        }


@dataclass(frozen=True)
class FixationReport:
    """
    Fixation summary for a trajectory.

    Exactly one of ``generation`` (first generation with p above the
    threshold) and ``max_freq`` (highest p reached) is set.
    """
    generation: Optional[int]
    max_freq: Optional[float]
    n_generations: int
    threshold: float = FIXATION_THRESHOLD

    @property
    def fixed(self) -> bool:
        return self.generation is not None

    def message(self) -> str:
        if self.fixed:
            return (f"Allele 1 fixed (p > {self.threshold}) "
                    f"at generation {self.generation}")
        return (f"No fixation within {self.n_generations} generations; "
                f"max p = {self.max_freq:.6f}")


# =============================================================================
# Simulation Engine
# =============================================================================

def detect_fixation(p: Sequence[float],
                    threshold: float = FIXATION_THRESHOLD) -> FixationReport:
    """First generation with p > threshold, else the maximum p observed."""
    p = np.asarray(p, dtype=float)
    if p.size == 0:
        raise ValueError("cannot detect fixation in an empty trajectory")
    above = p > threshold
    if above.any():
        # argmax returns the first True
        return FixationReport(generation=int(np.argmax(above)) + 1,
                              max_freq=None,
                              n_generations=len(p),
                              threshold=threshold)
    return FixationReport(generation=None,
                          max_freq=float(p.max()),
                          n_generations=len(p),
                          threshold=threshold)


def simulate_haploid(
        params: HaploidParams) -> Tuple[HaploidTrajectory, FixationReport]:
    """
    Run the deterministic haploid selection recurrence.

    Each generation:
      1. w̄ = p*w1 + (1 - p)*w2
      2. p' = w1*p / w̄
      3. Δp = p' - p

    w̄ is also recorded for the last generation, so every array has
    length n. Raises DivisionByZeroError if w̄ is ever exactly zero.
    """
    n = params.n_generations
    w1 = params.w1

    p = [float(params.p0)]
    w_bar = []
    delta_p = [0.0]

    for gen in range(1, n + 1):
        wb = params.mean_fitness(p[-1])
        if wb == 0:
            LOG.debug("zero mean fitness at generation %d for %s", gen, params)
            raise DivisionByZeroError(gen, params)
        w_bar.append(wb)
        if gen == n:
            break
        p_next = (w1 * p[-1]) / wb
        delta_p.append(p_next - p[-1])
        p.append(p_next)

    generations = np.arange(1, n + 1)
    generations.flags.writeable = False

    trajectory = HaploidTrajectory(
        params=params,
        generations=generations,
        p=_frozen(p),
        w_bar=_frozen(w_bar),
        delta_p=_frozen(delta_p),
    )
    report = detect_fixation(trajectory.p)
    LOG.debug("simulated %s: %s", params, report.message())
    return trajectory, report


def simulate(p0: float, w1: float, w2: float,
             n: int) -> Tuple[HaploidTrajectory, FixationReport]:
    """Scalar entry point: build HaploidParams and run the simulation."""
    return simulate_haploid(HaploidParams(p0=p0, w1=w1, w2=w2, n_generations=n))


def simulate_scenarios(scenarios: List[Tuple[str, HaploidParams]]
                       ) -> List[Tuple[str, HaploidTrajectory, FixationReport]]:
    """Run several independent parameter scenarios."""
    results = []
    for name, params in scenarios:
        trajectory, report = simulate_haploid(params)
        results.append((name, trajectory, report))
    return results


# =============================================================================
# Plotting Functions
# =============================================================================

def plot_haploid_selection(trajectory: HaploidTrajectory,
                           report: FixationReport,
                           figsize: Tuple[int, int] = (11, 8)):
    """
    Four diagnostic panels: mean fitness, allele frequency, phase plot,
    and change in frequency (generations 2..n).
    """
    params = trajectory.params
    series = trajectory.series()

    fig, axes = plt.subplots(2, 2, figsize=figsize)

    # --- Panel 1: Mean fitness ---
    ax = axes[0, 0]
    x, y = series['w_bar']
    ax.plot(x, y, color=COLORS['w_bar'], lw=2)
    ax.set_xlabel('Generation')
    ax.set_ylabel('Mean fitness (w̄)')
    ax.set_title('Mean Population Fitness')
    lo, hi = min(params.w1, params.w2), max(params.w1, params.w2)
    margin = max((hi - lo) * 0.1, 0.01)
    ax.set_ylim(lo - margin, hi + margin)

    # --- Panel 2: Allele frequency ---
    ax = axes[0, 1]
    x, y = series['p']
    ax.plot(x, y, color=COLORS['p'], lw=2, label='p')
    if report.fixed:
        ax.axvline(report.generation, color=COLOR_FIXATION, ls='--', lw=1,
                   label=f'fixation (gen {report.generation})')
    ax.set_xlabel('Generation')
    ax.set_ylabel('p')
    ax.set_title('Allele Frequency')
    ax.set_ylim(-0.02, 1.02)
    ax.legend(loc='best')

    # --- Panel 3: Phase plot ---
    ax = axes[1, 0]
    x, y = series['phase']
    ax.plot([0, 1], [0, 1], color=COLOR_GUIDE, ls='--', lw=0.5)
    ax.plot(x, y, 'o', color=COLORS['phase'], ms=3)
    ax.set_xlabel('p(t)')
    ax.set_ylabel('p(t+1)')
    ax.set_title('Phase Plot')
    ax.set_xlim(-0.02, 1.02)
    ax.set_ylim(-0.02, 1.02)
    ax.set_aspect('equal')

    # --- Panel 4: Change in frequency ---
    ax = axes[1, 1]
    x, y = series['delta_p']
    ax.plot(x, y, color=COLORS['delta_p'], lw=2)
    ax.axhline(0, color=COLOR_GUIDE, ls='--', lw=0.5)
    ax.set_xlabel('Generation')
    ax.set_ylabel('Δp')
    ax.set_title('Change in Allele Frequency')

    fig.suptitle(
        f"p0={params.p0}, w1={params.w1}, w2={params.w2}: {report.message()}",
        fontsize=12
    )
    fig.tight_layout()
    return fig, axes


def compare_scenarios(
        results: List[Tuple[str, HaploidTrajectory, FixationReport]],
        metric: str = 'p',
        figsize: Tuple[int, int] = (10, 6)):
    """
    Compare already-simulated scenarios on one plot.

    ``results`` is the list of (name, trajectory, report) triples returned
    by simulate_scenarios.
    """
    if metric not in ('p', 'w_bar', 'delta_p'):
        raise ValueError(f"Unknown metric: {metric}")

    fig, ax = plt.subplots(figsize=figsize)
    colors = plt.cm.tab10(np.linspace(0, 1, max(len(results), 1)))

    for (name, trajectory, report), color in zip(results, colors):
        x, y = trajectory.series()[metric]
        ax.plot(x, y, color=color, lw=2, label=name)
        if metric == 'p' and report.fixed:
            ax.axvline(report.generation, color=color, ls=':', lw=1)

    ax.set_xlabel('Generation')
    ax.set_ylabel(metric)
    if results:
        ax.legend()

    if metric == 'delta_p':
        ax.axhline(0, color='gray', ls='--', lw=0.5)

    fig.tight_layout()
    return fig, ax


# =============================================================================
# Command Line
# =============================================================================

def _format_table(trajectory: HaploidTrajectory, every: int) -> str:
    n = len(trajectory)
    rows = sorted(set(range(0, n, every)) | {n - 1})
    lines = [f"{'gen':>6}  {'p':>12}  {'w_bar':>12}  {'delta_p':>12}"]
    for i in rows:
        lines.append(
            f"{trajectory.generations[i]:>6d}  {trajectory.p[i]:>12.8f}  "
            f"{trajectory.w_bar[i]:>12.8f}  {trajectory.delta_p[i]:>12.8f}"
        )
    return '\n'.join(lines)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Deterministic haploid selection simulator.")
    ap.add_argument('--preset', choices=sorted(PRESETS), default='basic',
                    help="parameter set used for any value not given")
    ap.add_argument('--p0', type=float, help="initial frequency of allele 1")
    ap.add_argument('--w1', type=float, help="fitness of allele 1")
    ap.add_argument('--w2', type=float, help="fitness of allele 2")
    ap.add_argument('-n', '--generations', type=int,
                    help="number of generations")
    ap.add_argument('--every', type=int, default=0,
                    help="print a table row every K generations")
    ap.add_argument('--plot', action='store_true',
                    help="show the diagnostic figure")
    ap.add_argument('--save', metavar='PATH',
                    help="write the diagnostic figure to PATH")
    ap.add_argument('--log-level', default='WARNING', type=str.upper,
                    choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                    help="logging level (DEBUG, INFO, WARNING, ...)")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    base = PRESETS[args.preset]
    try:
        params = HaploidParams(
            p0=base.p0 if args.p0 is None else args.p0,
            w1=base.w1 if args.w1 is None else args.w1,
            w2=base.w2 if args.w2 is None else args.w2,
            n_generations=(base.n_generations if args.generations is None
                           else args.generations),
        )
        LOG.info("running with %s", params)
        trajectory, report = simulate_haploid(params)
    except HaploidSelectionError as exc:
        LOG.error("simulation failed: %s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return 2

    if args.every > 0:
        print(_format_table(trajectory, args.every))
    print(report.message())

    if args.plot or args.save:
        fig, _ = plot_haploid_selection(trajectory, report)
        if args.save:
            fig.savefig(args.save)
            LOG.info("figure written to %s", args.save)
        if args.plot:
            plt.show()
        plt.close(fig)
    return 0


if __name__ == '__main__':
    sys.exit(main())
