import math

import numpy as np

from .quaternion import GOLDEN_ANGLE
from .residues import HYDROPHOBIC, HYDROPHOBICITY, to_one

PROBE_RADIUS = 1.4
CA_RADIUS = 1.7
SPHERE_POINTS = 100
BURIED_SASA = 20.0
EXPOSED_SASA = 100.0
SOLVATION_SCALE = 0.012  # kcal/mol per A^2 per hydropathy unit


def _unit_sphere(n):
    i = np.arange(n) + 0.5
    polar = np.arccos(1.0 - 2.0 * i / n)
    theta = GOLDEN_ANGLE * i
    return np.stack([
        np.sin(polar) * np.cos(theta),
        np.sin(polar) * np.sin(theta),
        np.cos(polar),
    ], axis=1)


def residue_sasa(structure, probe=PROBE_RADIUS, radius=CA_RADIUS, n_points=SPHERE_POINTS):
    """Shrake-Rupley on CA spheres. Residues without CA get NaN."""
    residues = structure.residues
    out = np.full(len(residues), np.nan)
    idx = [i for i, r in enumerate(residues) if r.CA is not None]
    if not idx:
        return out
    xyz = np.array([residues[i].CA.coord for i in idx])
    R = radius + probe
    sphere = _unit_sphere(n_points) * R
    area = 4.0 * math.pi * R * R
    for k, i in enumerate(idx):
        d = np.linalg.norm(xyz - xyz[k], axis=1)
        neigh = xyz[(d < 2.0 * R) & (d > 1e-9)]
        if len(neigh) == 0:
            out[i] = area
            continue
        pts = xyz[k] + sphere
        dist = np.linalg.norm(pts[:, None, :] - neigh[None, :, :], axis=2)
        exposed = np.all(dist >= R, axis=1)
        out[i] = area * float(np.count_nonzero(exposed)) / n_points
    return out


def classify_burial(sasa):
    if not np.isfinite(sasa):
        return "unknown"
    if sasa < BURIED_SASA:
        return "buried"
    if sasa > EXPOSED_SASA:
        return "exposed"
    return "partial"


def solvation_energy(structure, sasa=None):
    """Hydropathy-weighted exposed area: exposed hydrophobics cost, exposed polar residues pay back."""
    if sasa is None:
        sasa = residue_sasa(structure)
    total = 0.0
    for r, s in zip(structure.residues, sasa):
        if not np.isfinite(s):
            continue
        total += HYDROPHOBICITY.get(to_one(r.name), 0.0) * SOLVATION_SCALE * s
    return float(total)


def burial_statistics(structure):
    sasa = residue_sasa(structure)
    counts = {"buried": 0, "partial": 0, "exposed": 0, "unknown": 0}
    hydrophobic = 0
    hydrophobic_buried = 0
    for r, s in zip(structure.residues, sasa):
        label = classify_burial(s)
        counts[label] += 1
        if to_one(r.name) in HYDROPHOBIC:
            hydrophobic += 1
            if label == "buried":
                hydrophobic_buried += 1
    finite = sasa[np.isfinite(sasa)]
    return {
        **counts,
        "total_sasa": float(finite.sum()) if finite.size else 0.0,
        "hydrophobic_burial_fraction": hydrophobic_buried / hydrophobic if hydrophobic else 0.0,
    }
