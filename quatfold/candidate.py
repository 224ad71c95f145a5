import math
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from .bias import BiasScore
from .energy import EnergyComponents, is_degenerate
from .geometry import DEFAULT_PHI, DEFAULT_PSI, compute_torsions, wrap_pi
from .structure import Structure


@dataclass
class Candidate:
    structure: Structure
    method: str
    energy: float = math.nan
    components: Optional[EnergyComponents] = None
    bias: BiasScore = field(default_factory=BiasScore)
    diagnostics: List = field(default_factory=list)
    stats: dict = field(default_factory=dict)
    label: str = ""
    rank_score: float = math.inf

    @property
    def degenerate(self):
        return is_degenerate(self.energy)


def torsion_rmsd_deg(a, b):
    """RMS torsion difference in degrees over residues where both have defined phi/psi."""
    phi_a, psi_a = compute_torsions(a)
    phi_b, psi_b = compute_torsions(b)
    n = min(len(phi_a), len(phi_b))
    d = np.concatenate([wrap_pi(phi_a[:n] - phi_b[:n]), wrap_pi(psi_a[:n] - psi_b[:n])])
    d = d[np.isfinite(d)]
    if d.size == 0:
        return 0.0
    return float(np.degrees(np.sqrt(np.mean(d * d))))


def diversity(candidates):
    """Mean pairwise torsion RMSD (deg) across an ensemble."""
    structs = [c.structure if isinstance(c, Candidate) else c for c in candidates]
    if len(structs) < 2:
        return 0.0
    vals = [torsion_rmsd_deg(structs[i], structs[j])
            for i in range(len(structs)) for j in range(i + 1, len(structs))]
    return float(np.mean(vals))


def evaluate_candidate(structure, method, model, bias=None, stats=None):
    """Score a freshly sampled structure; energy and bias are computed here and nowhere else during sampling."""
    components = model.evaluate(structure)
    cand = Candidate(structure=structure, method=method, energy=components.total,
                     components=components, stats=dict(stats or {}))
    if bias is not None:
        cand.bias = bias.score(structure)
    return cand


def seed_torsions(structure):
    """Current (phi, psi) with undefined terminal values replaced by the extended-chain defaults."""
    phi, psi = compute_torsions(structure)
    phi = np.where(np.isfinite(phi), phi, DEFAULT_PHI)
    psi = np.where(np.isfinite(psi), psi, DEFAULT_PSI)
    return phi, psi
