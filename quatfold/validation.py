"""
Structure comparison: RMSD, TM-score, GDT-TS.

By default both coordinate sets are only centred on their own centroids, with
no rotational fit, which reproduces the legacy numbers. superpose=True applies
a Kabsch fit first; that is the physically meaningful RMSD but is not
comparable with results produced without it.
"""
import math
import logging
from dataclasses import dataclass, asdict

import numpy as np

from .errors import ComparisonError
from .structure import BACKBONE_NAMES

logger = logging.getLogger(__name__)

GDT_CUTOFFS = (1.0, 2.0, 4.0, 8.0)


@dataclass
class ComparisonResult:
    rmsd: float
    tm_score: float
    gdt_ts: float
    label: str
    n_aligned: int = 0
    atom_set: str = "CA"
    superposed: bool = False

    def as_dict(self):
        return asdict(self)


def _backbone(structure):
    out = []
    for r in structure.residues:
        for name in BACKBONE_NAMES:
            a = getattr(r, name)
            if a is not None:
                out.append(a.coord)
    return np.array(out, dtype=float).reshape(-1, 3)


def aligned_coordinates(predicted, reference, strict=False):
    """
    Corresponding coordinate sets: CA atoms when the counts match, otherwise
    all backbone atoms. Returns (P, Q, atom_set). With strict=True a remaining
    mismatch raises ComparisonError; otherwise both sets are truncated to the
    shorter length.
    """
    P = predicted.ca_coords()
    Q = reference.ca_coords()
    if len(P) == len(Q) and len(P) > 0:
        return P, Q, "CA"
    P = _backbone(predicted)
    Q = _backbone(reference)
    if len(P) == len(Q) and len(P) > 0:
        return P, Q, "backbone"
    if strict or min(len(P), len(Q)) == 0:
        raise ComparisonError(f"cannot align {len(P)} and {len(Q)} backbone atoms")
    n = min(len(P), len(Q))
    return P[:n], Q[:n], "truncated"


def kabsch(P, Q):
    """Rotation R minimising |P @ R.T - Q| for centred P, Q (proper rotation, det +1)."""
    H = P.T @ Q
    U, S, Vt = np.linalg.svd(H)
    d = np.sign(np.linalg.det(Vt.T @ U.T))
    D = np.diag([1.0, 1.0, d if d != 0 else 1.0])
    return Vt.T @ D @ U.T


def _centred(P, Q, superpose):
    P = P - P.mean(axis=0)
    Q = Q - Q.mean(axis=0)
    if superpose and len(P) >= 3:
        P = P @ kabsch(P, Q).T
    return P, Q


def rmsd(P, Q, superpose=False):
    P = np.asarray(P, dtype=float)
    Q = np.asarray(Q, dtype=float)
    if P.shape != Q.shape or len(P) == 0:
        return math.nan
    P, Q = _centred(P, Q, superpose)
    return float(np.sqrt(np.mean(np.sum((P - Q) ** 2, axis=1))))


def tm_d0(length):
    if length > 15:
        return 1.24 * (length - 15) ** (1.0 / 3.0) - 1.8
    return 0.5


def tm_score(P, Q, superpose=False, target_length=None, d0_length=None):
    """
    Sum of 1/(1+(d/d0)^2) over aligned pairs divided by the target length.
    target_length counts every target position, aligned or not, so a partial
    model cannot score above its coverage. d0 follows d0_length (residues)
    when given, otherwise the target length.
    """
    P = np.asarray(P, dtype=float)
    Q = np.asarray(Q, dtype=float)
    if P.shape != Q.shape or len(P) == 0:
        return 0.0
    L = max(target_length or len(Q), len(Q))
    d0 = tm_d0(d0_length or L)
    P, Q = _centred(P, Q, superpose)
    d = np.linalg.norm(P - Q, axis=1)
    return float(np.sum(1.0 / (1.0 + (d / d0) ** 2)) / L)


def gdt_ts(P, Q, superpose=False, target_length=None):
    """Mean over the GDT cutoffs of the fraction of target positions within the cutoff; unaligned positions miss."""
    P = np.asarray(P, dtype=float)
    Q = np.asarray(Q, dtype=float)
    if P.shape != Q.shape or len(P) == 0:
        return 0.0
    L = max(target_length or len(Q), len(Q))
    P, Q = _centred(P, Q, superpose)
    d = np.linalg.norm(P - Q, axis=1)
    return float(np.mean([np.count_nonzero(d <= c) / L for c in GDT_CUTOFFS]))


def quality_label(rmsd_value, tm):
    if not math.isfinite(rmsd_value):
        return "Undefined"
    if rmsd_value < 2.0 and tm > 0.6:
        return "Excellent"
    if rmsd_value < 3.5 and tm > 0.5:
        return "Good"
    if rmsd_value < 5.0:
        return "Acceptable"
    return "Poor"


def compare_structures(predicted, reference, superpose=False):
    """
    RMSD over the aligned atoms; TM-score and GDT-TS normalised by the full
    reference, so reference positions missing from the model count as misses.
    """
    try:
        P, Q, atom_set = aligned_coordinates(predicted, reference)
    except ComparisonError as e:
        logger.warning(f"Comparison undefined: {e}")
        return ComparisonResult(math.nan, 0.0, 0.0, "Undefined", 0, "none", superpose)
    target = len(Q)
    if atom_set == "truncated":
        target = len(_backbone(reference))
        logger.warning(f"Length mismatch ({len(predicted)} vs {len(reference)} residues); "
                       f"comparing the first {len(P)} of {target} reference backbone atoms")
    r = rmsd(P, Q, superpose)
    tm = tm_score(P, Q, superpose, target_length=target, d0_length=len(reference))
    gdt = gdt_ts(P, Q, superpose, target_length=target)
    return ComparisonResult(r, tm, gdt, quality_label(r, tm), len(P), atom_set, superpose)
