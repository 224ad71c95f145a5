import math
import logging
from dataclasses import dataclass, field
from typing import List

import numpy as np

from .candidate import evaluate_candidate, seed_torsions
from .config import FragmentConfig
from .energy import EnergyModel, torsion_energy
from .errors import GeometryError, InputError
from .geometry import build_backbone, set_torsions

logger = logging.getLogger(__name__)


@dataclass
class Fragment:
    name: str
    kind: str
    phi: List[float]  # degrees
    psi: List[float]

    def __len__(self):
        return len(self.phi)


@dataclass
class FragmentLibrary:
    three: List[Fragment] = field(default_factory=list)
    nine: List[Fragment] = field(default_factory=list)

    def __len__(self):
        return len(self.three) + len(self.nine)

    def by_length(self, length):
        return self.nine if length == 9 else self.three


def _repeat(name, kind, phi, psi, length):
    return Fragment(name, kind, [float(phi)] * length, [float(psi)] * length)


def _pattern(name, kind, pairs, length):
    return Fragment(name, kind, [float(pairs[i % len(pairs)][0]) for i in range(length)],
                    [float(pairs[i % len(pairs)][1]) for i in range(length)])


def build_fragment_library():
    """3-mer and 9-mer torsion windows covering helix, strand, turn and loop motifs."""
    lib = FragmentLibrary()
    for length, bucket in ((3, lib.three), (9, lib.nine)):
        bucket.append(_repeat(f"helix_ideal_{length}", "helix", -60, -45, length))
        for d in (-10, -5, 5, 10):
            bucket.append(_repeat(f"helix_{d:+d}_{length}", "helix", -60 + d, -45 + d, length))
        bucket.append(_repeat(f"sheet_ideal_{length}", "sheet", -120, 120, length))
        for d in (-15, -10, 10, 15):
            bucket.append(_repeat(f"sheet_{d:+d}_{length}", "sheet", -120 + d, 120 - d, length))
        bucket.append(_pattern(f"turn_I_{length}", "turn", [(-60, -30), (-90, 0), (-120, 120)], length))
        bucket.append(_pattern(f"turn_II_{length}", "turn", [(-60, 120), (80, 0), (-120, 120)], length))
        bucket.append(_repeat(f"loop_extended_{length}", "loop", -140, 150, length))
        bucket.append(_pattern(f"loop_compact_{length}", "loop", [(-80, 80), (-70, 140), (-90, 0)], length))
    return lib


def fragment_torsion_energy(fragment, resnames=None, forcefield=None):
    """Summed Ramachandran-basin energy of a fragment, as generic residues unless resnames are given."""
    names = resnames or ["ALA"] * len(fragment)
    return sum(torsion_energy(math.radians(p), math.radians(s), name, forcefield)
               for p, s, name in zip(fragment.phi, fragment.psi, names))


def rank_fragments(fragments, bias=None):
    """
    Best first. An enabled bias scorer ranks by its torsion score; otherwise
    fragments are ranked by their physical torsion energy.
    """
    if bias is not None and bias.enabled:
        return sorted(fragments, key=lambda f: bias.score_torsions(np.radians(f.phi), np.radians(f.psi)),
                      reverse=True)
    return sorted(fragments, key=fragment_torsion_energy)


def _window_score(phi, psi, resnames, bias):
    """Higher is better, on the same scale rank_fragments orders by."""
    if bias is not None and bias.enabled:
        return bias.score_torsions(phi, psi)
    return -sum(torsion_energy(p, s, name) for p, s, name in zip(phi, psi, resnames))


def _choose(ranked, top_k, rng):
    pool = ranked[:max(1, top_k)]
    weights = np.array([1.0 / (r + 1) for r in range(len(pool))])
    return pool[int(rng.choice(len(pool), p=weights / weights.sum()))]


def assemble(phi, psi, library, config, rng, bias=None, resnames=None):
    """
    Tile every 9-residue window, then every 3-residue window, with a
    rank-weighted fragment per window. A 3-mer replaces its window only where
    no fragment has been placed yet or where it scores strictly better than
    what is there. Returns new (phi, psi) in radians and the insertions made.
    """
    phi = np.array(phi, dtype=float)
    psi = np.array(psi, dtype=float)
    n = len(phi)
    names = list(resnames) if resnames is not None else ["ALA"] * n
    placed = np.zeros(n, dtype=bool)
    inserted = []
    for length in (9, 3):
        ranked = rank_fragments(library.by_length(length), bias)
        if not ranked or n < length:
            continue
        for start in range(n - length + 1):
            frag = _choose(ranked, config.top_k, rng)
            window = slice(start, start + length)
            new_phi = np.radians(frag.phi)
            new_psi = np.radians(frag.psi)
            if length == 3 and placed[window].all():
                current = _window_score(phi[window], psi[window], names[window], bias)
                if _window_score(new_phi, new_psi, names[window], bias) <= current:
                    continue
            phi[window] = new_phi
            psi[window] = new_psi
            placed[window] = True
            inserted.append((frag.name, start))
    return phi, psi, inserted


def sample_fragments(sequence, seed_structure=None, config=None, model=None, bias=None, library=None):
    cfg = config or FragmentConfig()
    model = model or EnergyModel()
    library = build_fragment_library() if library is None else library
    if len(library) == 0:
        logger.warning("Fragment assembly: empty fragment library")
        return []
    try:
        base = seed_structure if seed_structure is not None else build_backbone(sequence)
    except (GeometryError, InputError) as e:
        logger.warning(f"Fragment assembly: cannot build seed structure: {e}")
        return []

    phi0, psi0 = seed_torsions(base)
    resnames = [r.name for r in base.residues]
    candidates = []
    for i in range(cfg.num_structures):
        rng = np.random.default_rng(cfg.seed + i)
        phi, psi, inserted = assemble(phi0, psi0, library, cfg, rng, bias, resnames)
        work = base.clone()
        try:
            set_torsions(work, phi, psi)
        except GeometryError as e:
            logger.debug(f"Fragment structure {i} failed: {e}")
            continue
        candidates.append(evaluate_candidate(work, "fragments", model, bias,
                                             stats={"index": i, "insertions": len(inserted)}))
    return candidates
