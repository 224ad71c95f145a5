"""
Harmonic bias: a heuristic, physically unvalidated scorer built from golden
ratio and digit-sum patterns in the backbone torsions.

It never feeds the energy model. HarmonicBias is disabled
unless constructed with enabled=True, and a disabled scorer returns a zero
score that ScoringPolicy ignores.
"""
import math
from dataclasses import dataclass

import numpy as np

from .geometry import compute_torsions, radius_of_gyration, wrap_pi

PHI = (1.0 + math.sqrt(5.0)) / 2.0
INV_PHI = 1.0 / PHI
PHI_SQUARED = PHI * PHI

# idealized torsions (deg)
IDEAL_HELIX = (-60.0, -45.0)
IDEAL_SHEET = (-120.0, 120.0)
TORSION_SIGMA_DEG = 20.0


def digital_root(n):
    """Repeated digit sum of a non-negative integer (0 for 0, otherwise 1..9)."""
    n = abs(int(n))
    if n == 0:
        return 0
    return 1 + (n - 1) % 9


def _angle_digits(rad):
    return int(abs(math.degrees(rad)) * 10)


def digital_root_pair_consistent(phi, psi):
    dr_phi = digital_root(_angle_digits(phi))
    dr_psi = digital_root(_angle_digits(psi))
    if dr_phi == 6 or dr_psi == 6:
        return True
    return abs(dr_phi - dr_psi) in (0, 3, 6)


@dataclass
class BiasWeights:
    torsion: float = 1.0
    ca_ratio: float = 1.0
    digital_root: float = 1.0
    breathing: float = 0.5


@dataclass
class BiasScore:
    torsion: float = 0.0
    ca_ratio: float = 0.0
    digital_root: float = 0.0
    breathing: float = 0.0
    total: float = 0.0
    enabled: bool = False


def torsion_alignment(phi, psi):
    """Mean golden-ratio-damped closeness of each (phi, psi) to the nearest ideal helix/sheet pair."""
    vals = []
    scale = math.radians(TORSION_SIGMA_DEG) * PHI
    for p, s in zip(phi, psi):
        if not (np.isfinite(p) and np.isfinite(s)):
            continue
        best = math.inf
        for p0, s0 in (IDEAL_HELIX, IDEAL_SHEET):
            dp = float(wrap_pi(p - math.radians(p0)))
            ds = float(wrap_pi(s - math.radians(s0)))
            best = min(best, math.hypot(dp, ds))
        vals.append(math.exp(-best / scale))
    return float(np.mean(vals)) if vals else 0.0


def ca_ratio_score(ca):
    """
    Ratio of the CA(i)-CA(i+2) span to the CA(i)-CA(i+1) step, compared with
    the golden ratio. Extended strands sit near phi, helices near 1.4.
    """
    ca = np.asarray(ca, dtype=float)
    if len(ca) < 3:
        return 0.0
    step = np.linalg.norm(ca[1:-1] - ca[:-2], axis=1)
    span = np.linalg.norm(ca[2:] - ca[:-2], axis=1)
    ok = step > 1e-9
    if not np.any(ok):
        return 0.0
    ratio = span[ok] / step[ok]
    return float(np.mean(np.exp(-np.abs(ratio - PHI) / INV_PHI)))


def digital_root_consistency(phi, psi):
    pairs = [(p, s) for p, s in zip(phi, psi) if np.isfinite(p) and np.isfinite(s)]
    if not pairs:
        return 0.0
    return sum(1 for p, s in pairs if digital_root_pair_consistent(p, s)) / float(len(pairs))


def breathing_score(ca):
    """Compactness: Rg against the ideal 2.2 * N^0.38, scored on a golden-ratio tolerance."""
    n = len(ca)
    if n < 3:
        return 0.0
    rg = radius_of_gyration(ca)
    ideal = 2.2 * n ** 0.38
    return float(math.exp(-abs(rg - ideal) / (PHI_SQUARED * ideal)))


class HarmonicBias:
    def __init__(self, weights=None, enabled=False):
        self.weights = weights or BiasWeights()
        self.enabled = enabled

    def score_torsions(self, phi, psi):
        """Torsion-only score for fragment ranking, without building coordinates."""
        w = self.weights
        parts = [(w.torsion, torsion_alignment(phi, psi)),
                 (w.digital_root, digital_root_consistency(phi, psi))]
        den = sum(wt for wt, _ in parts)
        return sum(wt * v for wt, v in parts) / den if den > 0 else 0.0

    def score(self, structure):
        if not self.enabled:
            return BiasScore(enabled=False)
        phi, psi = compute_torsions(structure)
        ca = structure.ca_coords()
        s = BiasScore(
            torsion=torsion_alignment(phi, psi),
            ca_ratio=ca_ratio_score(ca),
            digital_root=digital_root_consistency(phi, psi),
            breathing=breathing_score(ca),
            enabled=True,
        )
        w = self.weights
        den = w.torsion + w.ca_ratio + w.digital_root + w.breathing
        if den > 0:
            s.total = (w.torsion * s.torsion + w.ca_ratio * s.ca_ratio
                       + w.digital_root * s.digital_root + w.breathing * s.breathing) / den
        return s
