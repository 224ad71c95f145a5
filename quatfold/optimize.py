"""
Local refinement methods.

Every method works on the structure it is given (callers hand in a private
clone), returns an OptimizationResult, and leaves the structure at its best
finite state. A run moves INITIALIZED -> ITERATING -> CONVERGED,
MAX_STEPS_REACHED or DIVERGED. A start whose energy is already degenerate is
not optimized: the run ends DIVERGED with zero improvement so the stagnation
shows up in the diagnostics.
"""
import math
import logging
from dataclasses import dataclass, field
from enum import Enum

import numpy as np
from scipy.optimize import minimize

from . import quaternion as quat
from .candidate import seed_torsions
from .config import AnnealingConfig, ConstraintConfig, LbfgsConfig, RelaxConfig
from .constraints import restraint_energy
from .energy import EnergyModel, is_degenerate
from .errors import GeometryError, NumericalDivergence
from .geometry import set_torsions

logger = logging.getLogger(__name__)

KB = 0.001987


class OptimizerState(Enum):
    INITIALIZED = "initialized"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_STEPS_REACHED = "max_steps_reached"
    DIVERGED = "diverged"


@dataclass
class OptimizationResult:
    method: str
    state: OptimizerState = OptimizerState.INITIALIZED
    initial_energy: float = math.nan
    final_energy: float = math.nan
    steps: int = 0
    accepted: int = 0
    proposed: int = 0
    message: str = ""
    extra: dict = field(default_factory=dict)

    @property
    def improvement(self):
        if is_degenerate(self.initial_energy) or is_degenerate(self.final_energy):
            return 0.0
        return self.initial_energy - self.final_energy

    @property
    def stagnated(self):
        return self.improvement <= 0.0

    @property
    def acceptance_rate(self):
        return self.accepted / self.proposed if self.proposed else 0.0

    def as_dict(self):
        return {
            "method": self.method,
            "state": self.state.value,
            "initial_energy": self.initial_energy,
            "final_energy": self.final_energy,
            "improvement": self.improvement,
            "stagnated": self.stagnated,
            "steps": self.steps,
            "accepted": self.accepted,
            "proposed": self.proposed,
            "acceptance_rate": self.acceptance_rate,
            "message": self.message,
            **self.extra,
        }


def _begin(structure, method, model):
    result = OptimizationResult(method)
    e0 = model.total(structure)
    result.initial_energy = e0
    result.final_energy = e0
    if is_degenerate(e0):
        result.state = OptimizerState.DIVERGED
        result.message = f"degenerate starting energy {e0:.3g}; not optimized"
        logger.warning(f"{method}: {result.message}")
        return result, False
    result.state = OptimizerState.ITERATING
    return result, True


def gentle_relax(structure, config=None, model=None):
    """Fixed-step descent along the analytic forces; uphill steps are undone and the step halved."""
    cfg = config or RelaxConfig()
    model = model or EnergyModel()
    result, ok = _begin(structure, "gentle", model)
    if not ok:
        return result

    coords = structure.coords()
    energy = result.initial_energy
    step_size = cfg.step_size
    result.state = OptimizerState.MAX_STEPS_REACHED
    for step in range(cfg.max_steps):
        result.steps = step + 1
        forces = model.forces(structure)
        if not np.all(np.isfinite(forces)):
            structure.set_coords(coords)
            result.state = OptimizerState.DIVERGED
            result.message = "non-finite forces"
            break
        mag = np.linalg.norm(forces, axis=1)
        moving = mag > 1e-6
        if not np.any(moving):
            result.state = OptimizerState.CONVERGED
            result.message = "zero net force"
            break
        disp = np.zeros_like(coords)
        disp[moving] = step_size * forces[moving] / mag[moving, None]
        trial = coords + disp
        structure.set_coords(trial)
        e = model.total(structure)
        if not math.isfinite(e) or (step >= 5 and abs(e) > 2.0 * abs(energy) and e > energy):
            structure.set_coords(coords)
            result.state = OptimizerState.DIVERGED
            result.message = f"energy exploded at step {step + 1}"
            break
        if e > energy:
            structure.set_coords(coords)
            step_size *= 0.5
            if step_size < 1e-4:
                result.state = OptimizerState.CONVERGED
                result.message = "step size exhausted"
                break
            continue
        delta = energy - e
        coords = trial
        energy = e
        if delta < cfg.tolerance:
            result.state = OptimizerState.CONVERGED
            break
    result.final_energy = energy
    return result


def remove_clashes(structure, min_distance=2.0, target_distance=2.5, min_separation=2):
    """
    Push apart atoms of residues at least min_separation apart that sit closer
    than min_distance, to target_distance. Returns the number of pairs moved.
    """
    atoms = structure.atoms
    if len(atoms) < 2:
        return 0
    xyz = structure.coords()
    res_idx = np.array([a.residue.seq_index if a.residue is not None else -10 - k
                        for k, a in enumerate(atoms)])
    i, j = np.triu_indices(len(xyz), k=1)
    d = np.linalg.norm(xyz[i] - xyz[j], axis=1)
    mask = (d < min_distance) & (np.abs(res_idx[i] - res_idx[j]) >= min_separation)
    fixed = 0
    fallback = np.ones(3) / math.sqrt(3.0)
    for a, b in zip(i[mask], j[mask]):
        v = xyz[b] - xyz[a]
        dist = np.linalg.norm(v)
        if dist >= min_distance:
            continue
        u = v / dist if dist > 1e-6 else fallback
        move = 0.5 * (target_distance - dist)
        xyz[a] -= u * move
        xyz[b] += u * move
        fixed += 1
    if fixed:
        structure.set_coords(xyz)
    return fixed


def _fd_gradient(f, x, f0, h):
    g = np.empty_like(x)
    for k in range(len(x)):
        xk = x.copy()
        xk[k] += h
        g[k] = (f(xk) - f0) / h
    if not np.all(np.isfinite(g)):
        raise NumericalDivergence("non-finite gradient", last_energy=f0)
    return g


def _segment_index(n, segment_length):
    size = max(1, int(segment_length))
    return np.arange(n) // size


def quaternion_lbfgs(structure, config=None, model=None):
    """
    Quasi-Newton descent in quaternion space. Each segment of residues carries
    a unit quaternion encoding its (dphi, dpsi) offset from the starting
    torsions; scipy's L-BFGS-B drives the parameters with a forward-difference
    gradient. Non-finite energy or gradient aborts the run and restores the
    starting coordinates.
    """
    cfg = config or LbfgsConfig()
    model = model or EnergyModel()
    result, ok = _begin(structure, "lbfgs", model)
    if not ok:
        return result

    original = structure.coords()
    base_phi, base_psi = seed_torsions(structure)
    seg = _segment_index(len(base_phi), cfg.segment_length)
    nseg = int(seg.max()) + 1
    x0 = np.tile(quat.IDENTITY, nseg)
    evaluations = [0]

    def decode(x):
        q = x.reshape(nseg, 4)
        d = np.array([quat.to_ramachandran(qi) for qi in q])
        return base_phi + d[seg, 0], base_psi + d[seg, 1]

    def energy(x):
        phi, psi = decode(x)
        set_torsions(structure, phi, psi)
        e = model.total(structure)
        evaluations[0] += 1
        if not math.isfinite(e):
            raise NumericalDivergence("non-finite energy", last_energy=e)
        return e

    def fun(x):
        f0 = energy(x)
        return f0, _fd_gradient(energy, x, f0, cfg.fd_step)

    ftol = cfg.energy_tolerance / max(abs(result.initial_energy), 1.0)
    try:
        res = minimize(fun, x0, jac=True, method="L-BFGS-B",
                       options={"maxiter": cfg.max_iterations, "maxcor": cfg.memory,
                                "gtol": cfg.gradient_tolerance, "ftol": ftol})
    except (NumericalDivergence, GeometryError) as e:
        structure.set_coords(original)
        result.state = OptimizerState.DIVERGED
        result.message = f"aborted: {e}"
        result.extra["evaluations"] = evaluations[0]
        logger.warning(f"lbfgs: {result.message}; reverted to starting coordinates")
        return result

    phi, psi = decode(res.x)
    set_torsions(structure, phi, psi)
    final = model.total(structure)
    result.steps = int(res.nit)
    result.extra["evaluations"] = evaluations[0]
    if is_degenerate(final) or final > result.initial_energy:
        structure.set_coords(original)
        final = result.initial_energy
    result.final_energy = final
    if res.status == 1:
        result.state = OptimizerState.MAX_STEPS_REACHED
    else:
        result.state = OptimizerState.CONVERGED
    result.message = str(res.message)
    return result


def annealing_temperature(step, cfg):
    n = max(1, cfg.steps)
    t0, tf = cfg.initial_temp, cfg.final_temp
    frac = step / float(max(1, n - 1))
    if cfg.schedule == "linear":
        return t0 + (tf - t0) * frac
    if cfg.schedule == "geometric":
        # fixed per-step factor chosen to hit tf near the end, floored at tf
        alpha = (tf / t0) ** (1.0 / n) if t0 > 0 and tf > 0 else 0.0
        return max(tf, t0 * alpha ** step)
    if cfg.schedule == "exponential":
        if t0 <= 0 or tf <= 0:
            return tf
        return t0 * math.exp(math.log(tf / t0) * frac)
    raise ValueError(f"unknown cooling schedule: {cfg.schedule}")


def simulated_annealing(structure, config=None, model=None):
    """Metropolis torsion moves under a cooling schedule; the structure ends at the best state seen."""
    cfg = config or AnnealingConfig()
    model = model or EnergyModel()
    result, ok = _begin(structure, "annealing", model)
    if not ok:
        return result

    rng = np.random.default_rng(cfg.seed)
    original = structure.coords()
    phi, psi = seed_torsions(structure)
    set_torsions(structure, phi, psi)
    current = model.total(structure)
    best_energy = current
    best_coords = structure.coords()
    n = len(phi)

    for step in range(cfg.steps):
        T = annealing_temperature(step, cfg)
        frac = step / float(max(1, cfg.steps - 1))
        step_deg = cfg.initial_step_deg + (cfg.final_step_deg - cfg.initial_step_deg) * frac
        i = int(rng.integers(n))
        old = (phi[i], psi[i])
        phi[i] += rng.normal(0.0, math.radians(step_deg))
        psi[i] += rng.normal(0.0, math.radians(step_deg))
        result.proposed += 1
        try:
            set_torsions(structure, phi, psi)
            e = model.total(structure)
        except GeometryError:
            e = math.inf
        delta = e - current
        accept = not is_degenerate(e) and (delta <= 0 or (
            T > 0 and rng.random() < math.exp(-delta / (KB * T))))
        if accept:
            result.accepted += 1
            current = e
            if e < best_energy:
                best_energy = e
                best_coords = structure.coords()
        else:
            phi[i], psi[i] = old
            set_torsions(structure, phi, psi)
    result.steps = cfg.steps

    if best_energy < result.initial_energy:
        structure.set_coords(best_coords)
        result.final_energy = best_energy
    else:
        structure.set_coords(original)
        result.final_energy = result.initial_energy
    result.state = OptimizerState.MAX_STEPS_REACHED
    result.message = f"{cfg.schedule} schedule completed"
    return result


def constraint_refine(structure, constraints, config=None, model=None):
    """
    Minimize energy plus harmonic CA-CA restraints in torsion space
    (scipy L-BFGS-B, forward-difference gradient).
    """
    cfg = config or ConstraintConfig()
    model = model or EnergyModel()
    result, ok = _begin(structure, "constraints", model)
    if not ok:
        return result
    if not constraints:
        result.state = OptimizerState.CONVERGED
        result.message = "no constraints supplied"
        return result

    original = structure.coords()
    phi0, psi0 = seed_torsions(structure)
    n = len(phi0)
    x0 = np.concatenate([phi0, psi0])
    r0 = restraint_energy(structure, constraints, cfg.force_constant)
    start_objective = result.initial_energy + r0

    def objective(x):
        set_torsions(structure, x[:n], x[n:])
        e = model.total(structure)
        if not math.isfinite(e):
            raise NumericalDivergence("non-finite energy", last_energy=e)
        return e + restraint_energy(structure, constraints, cfg.force_constant)

    def fun(x):
        f0 = objective(x)
        return f0, _fd_gradient(objective, x, f0, 1e-3)

    try:
        res = minimize(fun, x0, jac=True, method="L-BFGS-B",
                       options={"maxiter": cfg.max_iterations})
    except (NumericalDivergence, GeometryError) as e:
        structure.set_coords(original)
        result.state = OptimizerState.DIVERGED
        result.message = f"aborted: {e}"
        return result

    set_torsions(structure, res.x[:n], res.x[n:])
    final = model.total(structure)
    r1 = restraint_energy(structure, constraints, cfg.force_constant)
    result.steps = int(res.nit)
    if is_degenerate(final) or final + r1 > start_objective:
        structure.set_coords(original)
        final, r1 = result.initial_energy, r0
    result.final_energy = final
    result.extra.update({"restraint_initial": r0, "restraint_final": r1, "constraints": len(constraints)})
    result.state = OptimizerState.MAX_STEPS_REACHED if res.status == 1 else OptimizerState.CONVERGED
    result.message = str(res.message)
    return result


METHODS = ("gentle", "lbfgs", "annealing", "constraints")


def run_cascade(structure, methods=("gentle",), model=None, relax=None, lbfgs=None,
                annealing=None, constraint_config=None, constraints=None, clash_removal=False):
    """
    Run the requested methods in order, each on its own clone. A method's
    output is adopted only if it lowers the energy. Returns one
    OptimizationResult per method.
    """
    model = model or EnergyModel()
    results = []
    if clash_removal and is_degenerate(model.total(structure)):
        moved = remove_clashes(structure)
        logger.info(f"Clash removal moved {moved} atom pairs")
    current = model.total(structure)
    for method in methods:
        work = structure.clone()
        if method == "gentle":
            r = gentle_relax(work, relax, model)
        elif method == "lbfgs":
            r = quaternion_lbfgs(work, lbfgs, model)
        elif method == "annealing":
            r = simulated_annealing(work, annealing, model)
        elif method == "constraints":
            r = constraint_refine(work, constraints or [], constraint_config, model)
        else:
            raise ValueError(f"unknown optimizer method: {method}")
        results.append(r)
        if r.state is OptimizerState.DIVERGED or is_degenerate(r.final_energy):
            continue
        if method == "constraints":
            # judged on energy + restraint, which constraint_refine only ever lowers
            better = (r.final_energy + r.extra.get("restraint_final", 0.0)
                      < r.initial_energy + r.extra.get("restraint_initial", 0.0))
        else:
            better = r.final_energy < current
        if better:
            structure.set_coords(work.coords())
            current = r.final_energy
    return results
