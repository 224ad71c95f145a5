import math
from dataclasses import dataclass
from typing import List

import numpy as np

HO_MIN = 1.5
HO_MAX = 2.5
MIN_ANGLE_DEG = 120.0
NO_OPTIMAL = 2.9
ENERGY_SCALE = -5.0


@dataclass
class HBond:
    donor: int
    acceptor: int
    ho_distance: float
    no_distance: float
    angle: float
    energy: float

    @property
    def separation(self):
        return abs(self.donor - self.acceptor)


def hbond_energy(no_distance, angle_deg):
    """Gaussian well in N...O distance times an angular factor that is 1 at 180 deg and 0.75 at 120 deg."""
    dist_term = math.exp(-((no_distance - NO_OPTIMAL) ** 2) / 0.2)
    angle_term = (1.0 - math.cos(math.radians(angle_deg))) / 2.0
    return ENERGY_SCALE * dist_term * angle_term


def detect_hbonds(structure) -> List[HBond]:
    """
    Backbone N-H...O=C hydrogen bonds. Needs explicit amide hydrogens; without
    them there are no donors and the list is empty.
    """
    residues = structure.residues
    donors = [(i, r.N.coord, r.H.coord) for i, r in enumerate(residues)
              if r.H is not None and r.N is not None]
    acceptors = [(j, r.O.coord) for j, r in enumerate(residues) if r.O is not None]
    if not donors or not acceptors:
        return []

    acc_idx = np.array([j for j, _ in acceptors])
    acc_xyz = np.array([xyz for _, xyz in acceptors])
    found = []
    for i, n_xyz, h_xyz in donors:
        ho = acc_xyz - h_xyz
        d_ho = np.linalg.norm(ho, axis=1)
        mask = (d_ho >= HO_MIN) & (d_ho <= HO_MAX) & (np.abs(acc_idx - i) > 1)
        if not np.any(mask):
            continue
        hn = n_xyz - h_xyz
        hn_l = np.linalg.norm(hn)
        if hn_l < 1e-9:
            continue
        for k in np.nonzero(mask)[0]:
            cosang = float(np.dot(hn, ho[k]) / (hn_l * d_ho[k]))
            angle = math.degrees(math.acos(max(-1.0, min(1.0, cosang))))
            if angle < MIN_ANGLE_DEG:
                continue
            d_no = float(np.linalg.norm(acc_xyz[k] - n_xyz))
            found.append(HBond(i, int(acc_idx[k]), float(d_ho[k]), d_no, angle,
                               hbond_energy(d_no, angle)))
    return found


def hydrogen_bond_energy(structure):
    return float(sum(hb.energy for hb in detect_hbonds(structure)))


def hbond_statistics(structure):
    bonds = detect_hbonds(structure)
    helix = sum(1 for b in bonds if b.separation == 4)
    sheet = sum(1 for b in bonds if b.separation >= 5)
    return {
        "total": len(bonds),
        "helix": helix,
        "sheet": sheet,
        "loop": len(bonds) - helix - sheet,
        "energy": float(sum(b.energy for b in bonds)),
        "mean_distance": float(np.mean([b.ho_distance for b in bonds])) if bonds else 0.0,
    }
