import math
import logging
from dataclasses import dataclass

import numpy as np

from .candidate import evaluate_candidate, seed_torsions
from .config import MonteCarloConfig
from .energy import EnergyModel, is_degenerate
from .errors import GeometryError, InputError
from .geometry import build_backbone, set_torsions

logger = logging.getLogger(__name__)

KB = 0.001987  # kcal/(mol K)
GOLDEN_RATIO = (1.0 + math.sqrt(5.0)) / 2.0
ACCEPTANCE_BAND = 0.1
HEATING_FACTOR = 1.1


@dataclass
class MonteCarloStats:
    proposed: int = 0
    accepted: int = 0
    initial_energy: float = math.nan
    best_energy: float = math.nan
    final_energy: float = math.nan
    final_temperature: float = math.nan
    converged: bool = False
    convergence_step: int = -1

    @property
    def acceptance_rate(self):
        return self.accepted / self.proposed if self.proposed else 0.0

    def as_dict(self):
        return {
            "proposed": self.proposed,
            "accepted": self.accepted,
            "acceptance_rate": self.acceptance_rate,
            "initial_energy": self.initial_energy,
            "best_energy": self.best_energy,
            "final_energy": self.final_energy,
            "final_temperature": self.final_temperature,
            "converged": self.converged,
            "convergence_step": self.convergence_step,
        }


def geometric_temperature(step, total_steps, t_initial, t_final):
    if total_steps <= 1 or t_initial <= 0 or t_final <= 0:
        return t_final
    return t_initial * (t_final / t_initial) ** (step / float(total_steps - 1))


def adapt_temperature(temperature, acceptance_rate, cfg):
    """
    Cool by 1/golden ratio when acceptance runs above the target band, heat by
    10% when below it. The result stays within [final_temp, initial_temp].
    """
    if acceptance_rate > cfg.target_acceptance + ACCEPTANCE_BAND:
        temperature /= GOLDEN_RATIO
    elif acceptance_rate < cfg.target_acceptance - ACCEPTANCE_BAND:
        temperature *= HEATING_FACTOR
    lo, hi = sorted((cfg.final_temp, cfg.initial_temp))
    return min(hi, max(lo, temperature))


def metropolis_accept(delta, temperature, rng):
    if delta <= 0:
        return True
    if temperature <= 0:
        return False
    return rng.random() < math.exp(-delta / (KB * temperature))


def _score(energy, bias, structure, cfg):
    if bias is None or not bias.enabled or not cfg.bias_weight:
        return energy
    return energy - cfg.bias_weight * cfg.bias_scale * bias.score(structure).total


def run_monte_carlo(structure, config=None, model=None, bias=None, rng=None):
    """
    Metropolis-Hastings over backbone torsions on a private clone of structure.
    Returns (lowest-energy structure seen, MonteCarloStats).
    """
    cfg = config or MonteCarloConfig()
    model = model or EnergyModel()
    rng = rng or np.random.default_rng(cfg.seed)
    work = structure.clone()
    phi, psi = seed_torsions(work)
    set_torsions(work, phi, psi)

    stats = MonteCarloStats()
    energy = model.total(work)
    stats.initial_energy = energy
    current = _score(energy, bias, work, cfg)
    best = work.clone()
    best_energy = energy
    step_rad = math.radians(cfg.step_size_deg)
    n = len(phi)
    T = cfg.initial_temp
    window_proposed = window_accepted = 0
    last_improvement = 0

    for step in range(cfg.steps):
        if cfg.adaptive:
            if window_proposed >= max(1, cfg.adapt_interval):
                T = adapt_temperature(T, window_accepted / window_proposed, cfg)
                window_proposed = window_accepted = 0
            if step - last_improvement > cfg.patience:
                stats.converged = True
                stats.convergence_step = step
                break
        else:
            T = geometric_temperature(step, cfg.steps, cfg.initial_temp, cfg.final_temp)
        i = int(rng.integers(n))
        old = (phi[i], psi[i])
        phi[i] += rng.normal(0.0, step_rad)
        psi[i] += rng.normal(0.0, step_rad)
        stats.proposed += 1
        window_proposed += 1
        try:
            set_torsions(work, phi, psi)
            trial_energy = model.total(work)
        except GeometryError:
            trial_energy = math.inf
        if is_degenerate(trial_energy):
            phi[i], psi[i] = old
            set_torsions(work, phi, psi)
            continue
        trial = _score(trial_energy, bias, work, cfg)
        if metropolis_accept(trial - current, T, rng):
            stats.accepted += 1
            window_accepted += 1
            current = trial
            energy = trial_energy
            if trial_energy < best_energy:
                best_energy = trial_energy
                best = work.clone()
                last_improvement = step
        else:
            phi[i], psi[i] = old
            set_torsions(work, phi, psi)

    stats.best_energy = best_energy
    stats.final_energy = energy
    stats.final_temperature = T
    return best, stats


def sample_monte_carlo(sequence, seed_structure=None, config=None, model=None, bias=None, num_runs=1):
    """Independent Metropolis runs; run i is seeded with config.seed + i."""
    cfg = config or MonteCarloConfig()
    model = model or EnergyModel()
    try:
        base = seed_structure if seed_structure is not None else build_backbone(sequence)
    except (GeometryError, InputError) as e:
        logger.warning(f"Monte Carlo sampler: cannot build seed structure: {e}")
        return []
    if is_degenerate(model.total(base)):
        logger.warning("Monte Carlo sampler: seed structure is degenerate, skipping")
        return []

    candidates = []
    for run in range(num_runs):
        rng = np.random.default_rng(cfg.seed + run)
        try:
            best, stats = run_monte_carlo(base, cfg, model, bias, rng)
        except GeometryError as e:
            logger.warning(f"Monte Carlo run {run} failed: {e}")
            continue
        logger.debug(f"MC run {run}: acceptance {stats.acceptance_rate:.2f}, best E {stats.best_energy:.2f}")
        candidates.append(evaluate_candidate(best, "monte_carlo", model, bias,
                                             stats={"run": run, **stats.as_dict()}))
    return candidates
