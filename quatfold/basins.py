import math
import logging
from dataclasses import dataclass

import numpy as np

from .candidate import evaluate_candidate
from .config import BasinConfig
from .energy import EnergyModel
from .errors import GeometryError, InputError
from .geometry import build_backbone, set_torsions
from .secondary import predict_secondary_structure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Basin:
    name: str
    phi: float
    psi: float
    sigma_phi: float
    sigma_psi: float
    population: float
    glycine_only: bool = False


BASINS = {
    "alpha_helix": Basin("alpha_helix", -60, -45, 20, 20, 0.35),
    "beta_sheet": Basin("beta_sheet", -120, 120, 30, 30, 0.25),
    "left_handed_helix": Basin("left_handed_helix", 60, 45, 25, 25, 0.05, glycine_only=True),
    "extended_ppii": Basin("extended_ppii", -75, 145, 25, 25, 0.15),
    "bridge": Basin("bridge", -90, 0, 30, 40, 0.10),
    "turn_I": Basin("turn_I", -60, -30, 20, 30, 0.05),
    "turn_II": Basin("turn_II", 80, 0, 25, 30, 0.03),
}

# pure-basin structures generated first in systematic mode
CANONICAL = ("alpha_helix", "beta_sheet", "extended_ppii")

SS_BASINS = {
    "H": ("alpha_helix",),
    "G": ("alpha_helix",),
    "E": ("beta_sheet",),
    "B": ("beta_sheet",),
    "C": ("extended_ppii", "bridge", "turn_I", "turn_II"),
}

PROLINE_PHI = -65.0


def _wrap_deg(a):
    return (a + 180.0) % 360.0 - 180.0


def draw(basin, rng, noise_scale=1.0):
    """(phi, psi) in degrees from a Gaussian around the basin centre."""
    phi = basin.phi + rng.normal(0.0, basin.sigma_phi * noise_scale)
    psi = basin.psi + rng.normal(0.0, basin.sigma_psi * noise_scale)
    return _wrap_deg(phi), _wrap_deg(psi)


def _allowed(names, aa, proportions):
    out = []
    for n in names:
        b = BASINS[n]
        if b.glycine_only and aa != "G":
            continue
        w = proportions.get(n, b.population)
        if w > 0:
            out.append((b, w))
    return out


def _pick(choices, rng):
    weights = np.array([w for _, w in choices], dtype=float)
    return choices[int(rng.choice(len(choices), p=weights / weights.sum()))][0]


def pure_basin_torsions(sequence, basin_name, rng=None, noise_scale=0.0):
    basin = BASINS[basin_name]
    phi, psi = [], []
    for aa in sequence:
        if noise_scale > 0 and rng is not None:
            p, s = draw(basin, rng, noise_scale)
        else:
            p, s = basin.phi, basin.psi
        if aa == "P":
            p = PROLINE_PHI
        phi.append(p)
        psi.append(s)
    return np.radians(phi), np.radians(psi)


def mixed_torsions(sequence, proportions, rng, noise_scale=1.0):
    phi, psi = [], []
    for aa in sequence:
        choices = _allowed(BASINS.keys(), aa, proportions)
        basin = _pick(choices, rng)
        p, s = draw(basin, rng, noise_scale)
        if aa == "P":
            p = PROLINE_PHI
        phi.append(p)
        psi.append(s)
    return np.radians(phi), np.radians(psi)


def constrained_torsions(sequence, secondary_structure, proportions, rng, noise_scale=1.0):
    """Per-residue basins chosen from an H/E/C string; unknown letters count as coil."""
    phi, psi = [], []
    ss = (secondary_structure or "").upper()
    for i, aa in enumerate(sequence):
        label = ss[i] if i < len(ss) else "C"
        choices = _allowed(SS_BASINS.get(label, SS_BASINS["C"]), aa, proportions)
        if not choices:
            choices = _allowed(SS_BASINS["C"], aa, proportions)
        p, s = draw(_pick(choices, rng), rng, noise_scale)
        if aa == "P":
            p = PROLINE_PHI
        phi.append(p)
        psi.append(s)
    return np.radians(phi), np.radians(psi)


def sample_basins(sequence, seed_structure=None, config=None, model=None, bias=None):
    """
    Basin exploration. systematic mode emits the all-helix, all-sheet and
    all-PPII chains before any random mixtures, so canonical secondary
    structure is always represented.
    """
    cfg = config or BasinConfig()
    model = model or EnergyModel()
    try:
        base = seed_structure if seed_structure is not None else build_backbone(sequence)
    except (GeometryError, InputError) as e:
        logger.warning(f"Basin explorer: cannot build seed structure: {e}")
        return []
    seq = base.sequence
    secondary = cfg.secondary_structure
    if cfg.mode == "constrained" and not secondary:
        secondary = predict_secondary_structure(seq).labels
        logger.info(f"Basin explorer: predicted secondary structure {secondary}")

    plans = []
    if cfg.mode == "systematic":
        plans += [("pure", name) for name in CANONICAL]
    while len(plans) < cfg.num_structures:
        plans.append(("constrained" if cfg.mode == "constrained" else "mixed", None))
    plans = plans[:cfg.num_structures]

    candidates = []
    for i, (kind, name) in enumerate(plans):
        rng = np.random.default_rng(cfg.seed + i)
        if kind == "pure":
            phi, psi = pure_basin_torsions(seq, name)
        elif kind == "constrained":
            phi, psi = constrained_torsions(seq, secondary, cfg.proportions, rng, cfg.noise_scale)
        else:
            phi, psi = mixed_torsions(seq, cfg.proportions, rng, cfg.noise_scale)
        work = base.clone()
        try:
            set_torsions(work, phi, psi)
        except GeometryError as e:
            logger.debug(f"Basin structure {i} failed: {e}")
            continue
        candidates.append(evaluate_candidate(work, "basins", model, bias,
                                             stats={"index": i, "plan": name or kind}))

    if bias is not None and bias.enabled:
        candidates.sort(key=lambda c: c.bias.total, reverse=True)
    return candidates


def basin_of(phi_deg, psi_deg):
    """Name of the basin whose centre is closest in normalised torsion distance."""
    best, best_d = None, math.inf
    for b in BASINS.values():
        d = math.hypot(_wrap_deg(phi_deg - b.phi) / b.sigma_phi, _wrap_deg(psi_deg - b.psi) / b.sigma_psi)
        if d < best_d:
            best, best_d = b.name, d
    return best
