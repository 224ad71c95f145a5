import math
import json
import logging
from typing import Any, Dict, List

import numpy as np

from .basins import BASINS, basin_of
from .geometry import compute_torsions, radius_of_gyration, validate_backbone_geometry
from .hbonds import hbond_statistics
from .solvation import burial_statistics

logger = logging.getLogger(__name__)

SS_CODE = {
    "alpha_helix": "H",
    "turn_I": "H",
    "beta_sheet": "E",
    "extended_ppii": "E",
}


def rama_pass_rate(phi, psi):
    """Fraction of defined residues within two sigma of some basin centre."""
    count = 0
    total = 0
    for p, s in zip(np.degrees(phi), np.degrees(psi)):
        if not (np.isfinite(p) and np.isfinite(s)):
            continue
        total += 1
        b = BASINS[basin_of(p, s)]
        dp = (p - b.phi + 180.0) % 360.0 - 180.0
        ds = (s - b.psi + 180.0) % 360.0 - 180.0
        if (dp / b.sigma_phi) ** 2 + (ds / b.sigma_psi) ** 2 < 4.0:
            count += 1
    return count / float(total) if total else 0.0


def secondary_structure(structure):
    """H/E/C string from the basin of each residue's torsions; termini are C."""
    phi, psi = compute_torsions(structure)
    out = []
    for p, s in zip(np.degrees(phi), np.degrees(psi)):
        if not (np.isfinite(p) and np.isfinite(s)):
            out.append("C")
            continue
        out.append(SS_CODE.get(basin_of(p, s), "C"))
    return "".join(out)


def segment_lengths(ss_str):
    runs = {"H": [], "E": [], "C": []}
    cur = None
    cnt = 0
    for c in ss_str + "$":
        if c == cur:
            cnt += 1
            continue
        if cur is not None:
            runs[cur if cur in runs else "C"].append(cnt)
        cur = c
        cnt = 1
    return runs


def summarize_structure(structure) -> Dict[str, Any]:
    ss_str = secondary_structure(structure)
    runs = segment_lengths(ss_str)
    phi, psi = compute_torsions(structure)
    return {
        "length": len(structure),
        "secondary_structure": ss_str,
        "helix_lengths": runs["H"],
        "strand_lengths": runs["E"],
        "loop_lengths": runs["C"],
        "rama_pass_rate": rama_pass_rate(phi, psi),
        "radius_of_gyration": radius_of_gyration(structure.ca_coords()),
        "geometry_problems": len(validate_backbone_geometry(structure)),
        "hbonds": hbond_statistics(structure),
        "burial": burial_statistics(structure),
    }


def _clean(value):
    """JSON-safe copy: non-finite floats become null, numpy scalars become Python numbers."""
    if isinstance(value, dict):
        return {str(k): _clean(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_clean(v) for v in value]
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def candidate_record(outcome, rank=None) -> Dict[str, Any]:
    rec = {"index": outcome.index, "method": outcome.method, "success": outcome.success}
    if rank is not None:
        rec["rank"] = rank
    if not outcome.success:
        rec["error"] = outcome.error
        return rec
    cand = outcome.candidate
    rec.update({
        "energy": cand.energy,
        "rank_score": cand.rank_score,
        "degenerate": cand.degenerate,
        "components": cand.components.as_dict() if cand.components is not None else {},
        "bias": vars(cand.bias).copy(),
        "optimizers": [d.as_dict() for d in cand.diagnostics],
        "sampling": cand.stats,
    })
    if outcome.comparison is not None:
        rec["comparison"] = outcome.comparison.as_dict()
    return rec


def result_to_dict(result, include_best_details=True) -> Dict[str, Any]:
    records: List[Dict[str, Any]] = [candidate_record(o, rank=i + 1) for i, o in enumerate(result.candidates)]
    records += [candidate_record(o) for o in result.failures]
    data = {
        "sequence": result.sequence,
        "summary": vars(result.summary).copy(),
        "errors": list(result.errors),
        "predicted_secondary_structure": result.secondary_structure,
        "diverse": [o.index for o in result.diverse],
        "clusters": [{"medoid": c.medoid.index, "members": [o.index for o in c.members]}
                     for c in result.clusters],
        "candidates": records,
    }
    best = result.best
    if best is not None and include_best_details:
        data["best"] = {"index": best.index, "method": best.method,
                        **summarize_structure(best.candidate.structure)}
    return _clean(data)


def write_results_json(path, data):
    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(_clean(data), f, ensure_ascii=False, indent=2)
        return True
    except OSError as e:
        logger.error(f"Cannot write results to {path}: {e}")
        return False
