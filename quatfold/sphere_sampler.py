import logging

import numpy as np

from . import quaternion as quat
from .candidate import evaluate_candidate, seed_torsions
from .config import SphereSamplerConfig
from .energy import EnergyModel, is_degenerate
from .errors import GeometryError, InputError
from .geometry import build_backbone, set_torsions

logger = logging.getLogger(__name__)


def _segments(n, cfg):
    if not cfg.per_segment:
        return [list(range(n))]
    size = max(1, int(cfg.segment_length))
    return [list(range(s, min(n, s + size))) for s in range(0, n, size)]


def _targets(cfg, rng):
    if cfg.use_fibonacci:
        return quat.fibonacci_sphere(cfg.num_samples)
    return quat.random_quaternions(cfg.num_samples, rng)


def perturb_torsions(phi, psi, target, fraction, offset, rng):
    """SLERP each (phi, psi) quaternion a fraction of the way toward target, with a small 4D jitter."""
    new_phi = np.array(phi, dtype=float)
    new_psi = np.array(psi, dtype=float)
    for i in range(len(new_phi)):
        q0 = quat.from_ramachandran(new_phi[i], new_psi[i])
        q = quat.slerp(q0, target, fraction)
        if offset > 0:
            q = quat.normalize(q + rng.normal(0.0, offset, 4))
        new_phi[i], new_psi[i] = quat.to_ramachandran(q)
    return new_phi, new_psi


def sample_sphere(sequence, seed_structure=None, config=None, model=None, bias=None):
    """
    Quaternion-sphere sampling. Each sample takes a Fibonacci-sphere target
    orientation (one per segment, or one for the whole chain) and walks every
    residue's torsion quaternion toward it over slerp_steps; the lowest-energy
    point on the walk is kept.
    """
    cfg = config or SphereSamplerConfig()
    model = model or EnergyModel()
    rng = np.random.default_rng(cfg.seed)
    try:
        base = seed_structure if seed_structure is not None else build_backbone(sequence)
    except (GeometryError, InputError) as e:
        logger.warning(f"Sphere sampler: cannot build seed structure: {e}")
        return []

    phi0, psi0 = seed_torsions(base)
    segments = _segments(len(phi0), cfg)
    targets = _targets(cfg, rng)
    k = len(targets)
    candidates = []
    for s in range(k):
        work = base.clone()
        best = None
        best_energy = np.inf
        steps = max(1, int(cfg.slerp_steps))
        for step in range(1, steps + 1):
            fraction = cfg.perturb_radius * step / steps
            phi = phi0.copy()
            psi = psi0.copy()
            for seg_idx, seg in enumerate(segments):
                # segments take successive points of the sphere so neighbours differ
                target = targets[(s + seg_idx * 7) % k] if cfg.per_segment else targets[s]
                p, q = perturb_torsions(phi0[seg], psi0[seg], target, fraction,
                                        cfg.residue_offset, rng)
                phi[seg] = p
                psi[seg] = q
            try:
                set_torsions(work, phi, psi)
            except GeometryError as e:
                logger.debug(f"Sphere sample {s} step {step} failed: {e}")
                continue
            energy = model.total(work)
            if not is_degenerate(energy) and energy < best_energy:
                best_energy = energy
                best = work.clone()
        if best is None:
            continue
        candidates.append(evaluate_candidate(best, "sphere", model, bias,
                                             stats={"sample": s, "slerp_steps": steps}))
    logger.debug(f"Sphere sampler produced {len(candidates)}/{k} candidates")
    return candidates
