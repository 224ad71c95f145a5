from dataclasses import dataclass
from typing import List

import numpy as np

from .residues import HYDROPHOBICITY, clean_sequence


@dataclass
class DistanceConstraint:
    """CA-CA restraint. upper_only makes it a flat-bottom contact bound (no penalty below target)."""
    i: int
    j: int
    target: float
    k: float = 1.0
    upper_only: bool = True


def _ca_by_residue(structure):
    """CA coordinate per residue index, None where the residue has no CA."""
    return [r.CA.coord if r.CA is not None else None for r in structure.residues]


def _pair_distance(ca, c):
    if c.i >= len(ca) or c.j >= len(ca) or ca[c.i] is None or ca[c.j] is None:
        return None
    return float(np.linalg.norm(ca[c.i] - ca[c.j]))


def restraint_energy(structure, constraints, force_constant=None):
    if not constraints:
        return 0.0
    ca = _ca_by_residue(structure)
    total = 0.0
    for c in constraints:
        d = _pair_distance(ca, c)
        if d is None:
            continue
        excess = d - c.target
        if c.upper_only and excess <= 0:
            continue
        k = c.k if force_constant is None else force_constant
        total += k * excess * excess
    return total


def restraint_violations(structure, constraints, tolerance=0.5):
    ca = _ca_by_residue(structure)
    out = 0
    for c in constraints:
        d = _pair_distance(ca, c)
        if d is None:
            continue
        if d > c.target + tolerance or (not c.upper_only and d < c.target - tolerance):
            out += 1
    return out


def contacts_from_structure(structure, threshold=8.0, min_separation=6, k=1.0) -> List[DistanceConstraint]:
    """Native CA-CA contacts of a reference structure as upper-bound restraints."""
    ca = _ca_by_residue(structure)
    out = []
    for i in range(len(ca)):
        for j in range(i + min_separation, len(ca)):
            d = _pair_distance(ca, DistanceConstraint(i, j, threshold))
            if d is not None and d <= threshold:
                out.append(DistanceConstraint(i, j, threshold, k))
    return out


def predict_contacts(sequence, threshold=8.0, min_separation=6, max_contacts=None, k=1.0):
    """
    Sequence-only contact guess: pairs of strongly hydrophobic residues far
    apart in sequence, strongest pairs first. Capped at one contact per residue
    on average.
    """
    seq = clean_sequence(sequence)
    scored = []
    for i in range(len(seq)):
        hi = HYDROPHOBICITY.get(seq[i], 0.0)
        if hi <= 1.5:
            continue
        for j in range(i + min_separation, len(seq)):
            hj = HYDROPHOBICITY.get(seq[j], 0.0)
            if hj <= 1.5:
                continue
            scored.append((hi + hj, i, j))
    scored.sort(reverse=True)
    limit = len(seq) if max_contacts is None else max_contacts
    return [DistanceConstraint(i, j, threshold, k) for _, i, j in scored[:limit]]
