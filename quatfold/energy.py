"""
AMBER-flavoured backbone energy.

compute_energy is a pure function of the coordinates: every component is
recomputed on each call. Totals at or above DEGENERATE_THRESHOLD in magnitude
mean an atomic clash or broken geometry and must not be treated as a real
energy by any caller.
"""
import math
from dataclasses import dataclass, field, asdict
from typing import Dict, Tuple

import numpy as np

from .geometry import compute_torsions
from .hbonds import hydrogen_bond_energy
from .solvation import solvation_energy

COULOMB_CONSTANT = 332.06
CLASH_DISTANCE = 0.1
CLASH_ENERGY = 1e12
DEGENERATE_THRESHOLD = 1e9


def _deg(x):
    return math.radians(x)


@dataclass
class ForceField:
    # element -> (epsilon kcal/mol, sigma A)
    lj: Dict[str, Tuple[float, float]] = field(default_factory=lambda: {
        "C": (0.086, 1.908),
        "N": (0.170, 1.824),
        "O": (0.210, 1.661),
        "H": (0.016, 1.487),
        "S": (0.250, 2.000),
    })
    default_lj: Tuple[float, float] = (0.1, 1.8)
    charges: Dict[str, float] = field(default_factory=lambda: {
        "N": -0.4157,
        "H": 0.2719,
        "CA": 0.0337,
        "C": 0.5973,
        "O": -0.5679,
    })
    # (K kcal/mol/A^2, r0 A)
    bonds: Dict[str, Tuple[float, float]] = field(default_factory=lambda: {
        "N-CA": (337.0, 1.449),
        "CA-C": (317.0, 1.522),
        "C-N": (490.0, 1.335),
        "C-O": (570.0, 1.229),
    })
    # (K kcal/mol/rad^2, theta0 deg)
    angles: Dict[str, Tuple[float, float]] = field(default_factory=lambda: {
        "N-CA-C": (63.0, 110.1),
        "CA-C-N": (70.0, 116.6),
        "C-N-CA": (50.0, 121.9),
        "CA-C-O": (80.0, 120.4),
    })
    # Ramachandran basins (phi0, psi0, sigma_phi, sigma_psi) in degrees
    rama_basins: Dict[str, tuple] = field(default_factory=lambda: {
        "general": ((-60, -45, 30, 30), (-120, 120, 40, 50), (-75, 145, 30, 30), (60, 45, 25, 25)),
        "GLY": ((-60, -45, 50, 50), (-120, 120, 60, 70), (-75, 145, 50, 50), (60, 45, 50, 50)),
        "PRO": ((-60, -30, 20, 40), (-60, 145, 20, 30)),
    })
    rama_k: Dict[str, float] = field(default_factory=lambda: {"general": 3.0, "GLY": 1.5, "PRO": 4.0})

    def lj_params(self, element):
        return self.lj.get(element, self.default_lj)


DEFAULT_FORCEFIELD = ForceField()


@dataclass
class EnergyComponents:
    vdw: float = 0.0
    electrostatic: float = 0.0
    bond: float = 0.0
    angle: float = 0.0
    dihedral: float = 0.0
    hbond: float = 0.0
    solvation: float = 0.0

    @property
    def total(self):
        return (self.vdw + self.electrostatic + self.bond + self.angle
                + self.dihedral + self.hbond + self.solvation)

    @property
    def is_degenerate(self):
        return is_degenerate(self.total)

    def as_dict(self):
        d = asdict(self)
        d["total"] = self.total
        return d


def is_degenerate(energy):
    return energy is None or not math.isfinite(energy) or abs(energy) >= DEGENERATE_THRESHOLD


def _atom_arrays(structure, ff):
    n = len(structure.atoms)
    xyz = np.empty((n, 3))
    res_idx = np.empty(n, dtype=int)
    eps = np.empty(n)
    sig = np.empty(n)
    q = np.empty(n)
    for k, atom in enumerate(structure.atoms):
        xyz[k] = atom.coord
        res_idx[k] = atom.residue.seq_index if atom.residue is not None else -10 - k
        e, s = ff.lj_params(atom.element)
        eps[k] = e
        sig[k] = s
        q[k] = ff.charges.get(atom.name, 0.0)
    return xyz, res_idx, eps, sig, q


def nonbonded_energy(structure, vdw_cutoff=10.0, elec_cutoff=12.0, forcefield=None):
    """(vdw, electrostatic). Pairs in the same or adjacent residues are excluded, except for coincident atoms."""
    ff = forcefield or DEFAULT_FORCEFIELD
    if len(structure.atoms) < 2:
        return 0.0, 0.0
    xyz, res_idx, eps, sig, q = _atom_arrays(structure, ff)
    i, j = np.triu_indices(len(xyz), k=1)
    r = np.linalg.norm(xyz[i] - xyz[j], axis=1)

    clash = r < CLASH_DISTANCE
    clash_energy = CLASH_ENERGY * float(np.count_nonzero(clash))

    keep = (np.abs(res_idx[i] - res_idx[j]) > 1) & ~clash
    i, j, r = i[keep], j[keep], r[keep]

    vdw_mask = r <= vdw_cutoff
    if np.any(vdw_mask):
        rv = r[vdw_mask]
        iv, jv = i[vdw_mask], j[vdw_mask]
        sigma = 0.5 * (sig[iv] + sig[jv])
        epsilon = np.sqrt(eps[iv] * eps[jv])
        sr6 = (sigma / rv) ** 6
        vdw = float(np.sum(4.0 * epsilon * (sr6 * sr6 - sr6)))
    else:
        vdw = 0.0

    elec_mask = r <= elec_cutoff
    if np.any(elec_mask):
        re = r[elec_mask]
        ie, je = i[elec_mask], j[elec_mask]
        # distance-dependent dielectric eps(r) = 4r
        elec = float(np.sum(COULOMB_CONSTANT * q[ie] * q[je] / (4.0 * re * re)))
    else:
        elec = 0.0
    return vdw + clash_energy, elec


def _bond_term(a, b, params):
    k, r0 = params
    d = float(np.linalg.norm(a.coord - b.coord))
    return k * (d - r0) ** 2


def _angle_term(a, b, c, params):
    k, theta0 = params
    u = a.coord - b.coord
    v = c.coord - b.coord
    nu = np.linalg.norm(u)
    nv = np.linalg.norm(v)
    if nu < 1e-9 or nv < 1e-9:
        return k * math.pi ** 2
    theta = math.acos(max(-1.0, min(1.0, float(np.dot(u, v) / (nu * nv)))))
    return k * (theta - _deg(theta0)) ** 2


def bonded_energy(structure, forcefield=None):
    """(bond, angle) harmonic penalties against the ideal backbone geometry."""
    ff = forcefield or DEFAULT_FORCEFIELD
    bond = 0.0
    angle = 0.0
    res = structure.residues
    for i, r in enumerate(res):
        if r.N is not None and r.CA is not None:
            bond += _bond_term(r.N, r.CA, ff.bonds["N-CA"])
        if r.CA is not None and r.C is not None:
            bond += _bond_term(r.CA, r.C, ff.bonds["CA-C"])
        if r.C is not None and r.O is not None:
            bond += _bond_term(r.C, r.O, ff.bonds["C-O"])
        if r.N is not None and r.CA is not None and r.C is not None:
            angle += _angle_term(r.N, r.CA, r.C, ff.angles["N-CA-C"])
        if r.CA is not None and r.C is not None and r.O is not None:
            angle += _angle_term(r.CA, r.C, r.O, ff.angles["CA-C-O"])
        if i + 1 < len(res):
            nxt = res[i + 1]
            if r.C is not None and nxt.N is not None:
                bond += _bond_term(r.C, nxt.N, ff.bonds["C-N"])
                if r.CA is not None:
                    angle += _angle_term(r.CA, r.C, nxt.N, ff.angles["CA-C-N"])
                if nxt.CA is not None:
                    angle += _angle_term(r.C, nxt.N, nxt.CA, ff.angles["C-N-CA"])
    return float(bond), float(angle)


def torsion_energy(phi, psi, resname="ALA", forcefield=None):
    """
    Periodic Ramachandran-basin potential for one residue (radians in).
    k * (1 - best von Mises well), so every allowed basin is a zero-energy minimum.
    """
    ff = forcefield or DEFAULT_FORCEFIELD
    if not (math.isfinite(phi) and math.isfinite(psi)):
        return 0.0
    group = resname if resname in ("GLY", "PRO") else "general"
    best = 0.0
    for phi0, psi0, sp, ss in ff.rama_basins[group]:
        kp = 1.0 / _deg(sp) ** 2
        ks = 1.0 / _deg(ss) ** 2
        w = math.exp(kp * (math.cos(phi - _deg(phi0)) - 1.0) + ks * (math.cos(psi - _deg(psi0)) - 1.0))
        best = max(best, w)
    return ff.rama_k[group] * (1.0 - best)


def dihedral_energy(structure, forcefield=None):
    phi, psi = compute_torsions(structure)
    total = 0.0
    for r, p, s in zip(structure.residues, phi, psi):
        total += torsion_energy(p, s, r.name, forcefield)
    return float(total)


def compute_energy(structure, vdw_cutoff=10.0, elec_cutoff=12.0, forcefield=None,
                   include_solvation=True):
    vdw, elec = nonbonded_energy(structure, vdw_cutoff, elec_cutoff, forcefield)
    bond, angle = bonded_energy(structure, forcefield)
    return EnergyComponents(
        vdw=vdw,
        electrostatic=elec,
        bond=bond,
        angle=angle,
        dihedral=dihedral_energy(structure, forcefield),
        hbond=hydrogen_bond_energy(structure),
        solvation=solvation_energy(structure) if include_solvation else 0.0,
    )


def compute_forces(structure, vdw_cutoff=10.0, elec_cutoff=12.0, forcefield=None):
    """
    Analytic forces (-dE/dx) from the bond, Lennard-Jones and Coulomb terms, as
    an (n_atoms, 3) array. Angle, torsion and the knowledge-based terms are
    left to the energy checks of the callers.
    """
    ff = forcefield or DEFAULT_FORCEFIELD
    n = len(structure.atoms)
    forces = np.zeros((n, 3))
    if n < 2:
        return forces
    xyz, res_idx, eps, sig, q = _atom_arrays(structure, ff)
    i, j = np.triu_indices(n, k=1)
    delta = xyz[i] - xyz[j]
    r = np.linalg.norm(delta, axis=1)
    keep = (np.abs(res_idx[i] - res_idx[j]) > 1) & (r > CLASH_DISTANCE)
    i, j, delta, r = i[keep], j[keep], delta[keep], r[keep]

    dEdr = np.zeros_like(r)
    m = r <= vdw_cutoff
    if np.any(m):
        sigma = 0.5 * (sig[i[m]] + sig[j[m]])
        epsilon = np.sqrt(eps[i[m]] * eps[j[m]])
        sr6 = (sigma / r[m]) ** 6
        dEdr[m] += 4.0 * epsilon * (-12.0 * sr6 * sr6 + 6.0 * sr6) / r[m]
    m = r <= elec_cutoff
    if np.any(m):
        dEdr[m] += -2.0 * COULOMB_CONSTANT * q[i[m]] * q[j[m]] / (4.0 * r[m] ** 3)
    f = -(dEdr / r)[:, None] * delta
    np.add.at(forces, i, f)
    np.add.at(forces, j, -f)

    index = {id(a): k for k, a in enumerate(structure.atoms)}
    res = structure.residues
    pairs = []
    for k, r_ in enumerate(res):
        pairs += [(r_.N, r_.CA, "N-CA"), (r_.CA, r_.C, "CA-C"), (r_.C, r_.O, "C-O")]
        if k + 1 < len(res):
            pairs.append((r_.C, res[k + 1].N, "C-N"))
    for a, b, kind in pairs:
        if a is None or b is None:
            continue
        K, r0 = ff.bonds[kind]
        d = a.coord - b.coord
        dist = np.linalg.norm(d)
        if dist < 1e-9:
            continue
        fa = -2.0 * K * (dist - r0) * d / dist
        forces[index[id(a)]] += fa
        forces[index[id(b)]] -= fa
    return forces


@dataclass
class EnergyModel:
    """Cutoffs and parameter tables bundled so samplers and optimizers share one configuration."""
    vdw_cutoff: float = 10.0
    elec_cutoff: float = 12.0
    forcefield: ForceField = field(default_factory=ForceField)
    include_solvation: bool = True

    def evaluate(self, structure):
        return compute_energy(structure, self.vdw_cutoff, self.elec_cutoff, self.forcefield,
                              include_solvation=self.include_solvation)

    def total(self, structure):
        return self.evaluate(structure).total

    def forces(self, structure):
        return compute_forces(structure, self.vdw_cutoff, self.elec_cutoff, self.forcefield)
