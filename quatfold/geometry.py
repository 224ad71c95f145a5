import math
import logging
from functools import lru_cache

import numpy as np

from .errors import GeometryError, InputError
from .residues import to_three, clean_sequence
from .structure import Atom, Residue, Structure

logger = logging.getLogger(__name__)

# Ideal backbone geometry (Engh & Huber)
BOND_PARAMS = {
    "n_ca": 1.458,
    "ca_c": 1.52,
    "c_n": 1.33,
    "c_o": 1.23,
    "n_h": 1.01,
    "ang_N_CA_C": math.radians(111.0),
    "ang_CA_C_N": math.radians(117.0),
    "ang_C_N_CA": math.radians(121.0),
    "ang_CA_C_O": math.radians(120.5),
}

DEFAULT_PHI = math.radians(-120.0)
DEFAULT_PSI = math.radians(120.0)
DEFAULT_OMEGA = math.pi

# Physical ranges accepted by validate_backbone_geometry
BOND_RANGES = {
    ("N", "CA"): (1.0, 2.0),
    ("CA", "C"): (1.0, 2.0),
    ("C", "O"): (0.8, 2.0),
}


def wrap_pi(x):
    return (x + np.pi) % (2 * np.pi) - np.pi


def place_atom(a, b, c, bond_len, bond_angle, torsion):
    """
    NeRF: Places atom D such that
    Distance C-D = bond_len
    Angle B-C-D = bond_angle
    Dihedral A-B-C-D = torsion
    """
    bc = c - b
    ab = b - a
    bc_l = np.linalg.norm(bc)
    if bc_l < 1e-6 or np.linalg.norm(ab) < 1e-6:
        return c + np.array([bond_len, 0.0, 0.0])
    bc_u = bc / bc_l

    n = np.cross(ab, bc_u)
    n_l = np.linalg.norm(n)
    if n_l < 1e-6:
        # collinear A-B-C: any normal will do
        n = np.array([1.0, 0.0, 0.0]) if abs(bc_u[0]) < 0.9 else np.array([0.0, 1.0, 0.0])
        n = n - np.dot(n, bc_u) * bc_u
        n = n / np.linalg.norm(n)
    else:
        n = n / n_l
    nb = np.cross(n, bc_u)

    x = -bond_len * math.cos(bond_angle)
    y = bond_len * math.sin(bond_angle) * math.cos(torsion)
    z = bond_len * math.sin(bond_angle) * math.sin(torsion)
    return c + bc_u * x + nb * y + n * z


def _rotation_to_x(direction):
    """Rotation matrix taking unit vector `direction` onto +x (Rodrigues)."""
    u = direction / np.linalg.norm(direction)
    target = np.array([1.0, 0.0, 0.0])
    axis = np.cross(u, target)
    s = np.linalg.norm(axis)
    c = float(np.dot(u, target))
    if s < 1e-12:
        return np.eye(3) if c > 0 else np.diag([-1.0, -1.0, 1.0])
    axis = axis / s
    K = np.array([
        [0.0, -axis[2], axis[1]],
        [axis[2], 0.0, -axis[0]],
        [-axis[1], axis[0], 0.0],
    ])
    return np.eye(3) + s * K + (1.0 - c) * (K @ K)


def _raw_chain(n, phi, psi, omega):
    p = BOND_PARAMS
    N = np.zeros((n, 3))
    CA = np.zeros((n, 3))
    C = np.zeros((n, 3))
    O = np.zeros((n, 3))
    N[0] = np.array([0.0, 0.0, 0.0])
    CA[0] = np.array([p["n_ca"], 0.0, 0.0])
    C[0] = place_atom(np.array([-1.0, 0.0, 0.0]), N[0], CA[0], p["ca_c"], p["ang_N_CA_C"], 0.0)
    for i in range(1, n):
        # psi(i-1): N(i-1)-CA(i-1)-C(i-1)-N(i)
        N[i] = place_atom(N[i - 1], CA[i - 1], C[i - 1], p["c_n"], p["ang_CA_C_N"], psi[i - 1])
        # omega(i-1): CA(i-1)-C(i-1)-N(i)-CA(i)
        CA[i] = place_atom(CA[i - 1], C[i - 1], N[i], p["n_ca"], p["ang_C_N_CA"], omega[i - 1])
        # phi(i): C(i-1)-N(i)-CA(i)-C(i)
        C[i] = place_atom(C[i - 1], N[i], CA[i], p["ca_c"], p["ang_N_CA_C"], phi[i])
    for i in range(n):
        # carbonyl O sits trans to the following N
        O[i] = place_atom(N[i], CA[i], C[i], p["c_o"], p["ang_CA_C_O"], psi[i] + math.pi)
    return N, CA, C, O


@lru_cache(maxsize=1)
def _chain_frame():
    # Axis of the ideal extended chain in the raw NeRF frame. Consecutive CA
    # steps of a regular helix differ only perpendicular to its axis.
    k = 8
    N, CA, C, O = _raw_chain(k, [DEFAULT_PHI] * k, [DEFAULT_PSI] * k, [DEFAULT_OMEGA] * k)
    d = np.diff(CA, axis=0)
    axis = np.cross(d[2] - d[1], d[3] - d[2])
    axis = axis / np.linalg.norm(axis)
    if np.dot(axis, CA[-1] - CA[0]) < 0:
        axis = -axis
    return _rotation_to_x(axis)


def _torsion_arrays(n, phi, psi, omega):
    def fill(values, default):
        if values is None:
            return np.full(n, default, dtype=float)
        arr = np.asarray(values, dtype=float).copy()
        if arr.shape != (n,):
            raise InputError(f"expected {n} torsion values, got {arr.shape[0] if arr.ndim else 1}")
        arr[~np.isfinite(arr)] = default
        return arr
    return fill(phi, DEFAULT_PHI), fill(psi, DEFAULT_PSI), fill(omega, DEFAULT_OMEGA)


def backbone_coordinates(n, phi=None, psi=None, omega=None):
    """N, CA, C, O arrays for an n-residue chain in the canonical frame (radians in)."""
    phi, psi, omega = _torsion_arrays(n, phi, psi, omega)
    N, CA, C, O = _raw_chain(n, phi, psi, omega)
    R = _chain_frame()
    N, CA, C, O = (X @ R.T for X in (N, CA, C, O))
    for i in range(n):
        if not (np.all(np.isfinite(N[i])) and np.all(np.isfinite(CA[i]))
                and np.all(np.isfinite(C[i])) and np.all(np.isfinite(O[i]))):
            raise GeometryError(f"non-finite backbone coordinates at residue {i + 1}")
    return N, CA, C, O


def build_backbone(sequence, phi=None, psi=None, omega=None, chain="A", name="model"):
    """
    Build an ideal-geometry N/CA/C/O backbone.

    Torsions are per-residue arrays in radians; None means the extended chain
    (phi=-120, psi=+120, omega=180). The chain runs along +x.
    """
    seq = clean_sequence(sequence)
    if not seq:
        raise InputError("empty sequence")
    n = len(seq)
    N, CA, C, O = backbone_coordinates(n, phi, psi, omega)

    structure = Structure(name)
    serial = 1
    for i, aa in enumerate(seq):
        resn = to_three(aa)
        res = Residue(resn, i, chain=chain, resseq=i + 1)
        atoms = []
        for atom_name, xyz in (("N", N[i]), ("CA", CA[i]), ("C", C[i]), ("O", O[i])):
            atoms.append(Atom(atom_name, xyz, element=atom_name[0], serial=serial,
                              resname=resn, chain=chain, resseq=i + 1))
            serial += 1
        structure.add_residue(res, atoms)
    return structure


def set_torsions(structure, phi, psi, omega=None):
    """Rebuild coordinates in place from new torsions; atom identities are kept."""
    n = len(structure.residues)
    N, CA, C, O = backbone_coordinates(n, phi, psi, omega)
    for i, res in enumerate(structure.residues):
        for atom_name, xyz in (("N", N[i]), ("CA", CA[i]), ("C", C[i]), ("O", O[i])):
            atom = getattr(res, atom_name)
            if atom is not None:
                atom.coord = xyz.copy()
    if structure.has_hydrogens():
        _place_hydrogens(structure)
    return structure


def dihedral(a, b, c, d):
    """Signed dihedral angle in radians, in (-pi, pi]."""
    b0 = a - b
    b1 = c - b
    b2 = d - c
    b1_l = np.linalg.norm(b1)
    if b1_l < 1e-9:
        return float("nan")
    b1 = b1 / b1_l
    v = b0 - np.dot(b0, b1) * b1
    w = b2 - np.dot(b2, b1) * b1
    x = np.dot(v, w)
    y = np.dot(np.cross(b1, v), w)
    if abs(x) < 1e-12 and abs(y) < 1e-12:
        return float("nan")
    return math.atan2(y, x)


def bond_angle(a, b, c):
    """Angle a-b-c in radians."""
    u = a - b
    v = c - b
    nu = np.linalg.norm(u)
    nv = np.linalg.norm(v)
    if nu < 1e-9 or nv < 1e-9:
        return float("nan")
    cosang = np.clip(np.dot(u, v) / (nu * nv), -1.0, 1.0)
    return math.acos(cosang)


def compute_torsions(structure):
    """(phi, psi) arrays in radians; NaN at the termini and next to incomplete residues."""
    res = structure.residues
    n = len(res)
    phi = np.full(n, np.nan)
    psi = np.full(n, np.nan)
    for i in range(n):
        if not res[i].has_complete_backbone():
            continue
        if i > 0 and res[i - 1].has_complete_backbone():
            phi[i] = dihedral(res[i - 1].C.coord, res[i].N.coord, res[i].CA.coord, res[i].C.coord)
        if i < n - 1 and res[i + 1].has_complete_backbone():
            psi[i] = dihedral(res[i].N.coord, res[i].CA.coord, res[i].C.coord, res[i + 1].N.coord)
    return phi, psi


def _hydrogen_position(c_prev, n, ca):
    u1 = n - c_prev
    u2 = n - ca
    l1 = np.linalg.norm(u1)
    l2 = np.linalg.norm(u2)
    if l1 < 1e-9 or l2 < 1e-9:
        return None
    d = u1 / l1 + u2 / l2
    dl = np.linalg.norm(d)
    if dl < 1e-9:
        return None
    return n + BOND_PARAMS["n_h"] * d / dl


def _place_hydrogens(structure):
    res = structure.residues
    for i in range(1, len(res)):
        r = res[i]
        if r.H is None or r.N is None or r.CA is None or res[i - 1].C is None:
            continue
        pos = _hydrogen_position(res[i - 1].C.coord, r.N.coord, r.CA.coord)
        if pos is not None:
            r.H.coord = pos


def add_backbone_hydrogens(structure):
    """
    Place the amide H on every residue after the first, except proline.
    Idempotent; returns the number of hydrogens added.
    """
    res = structure.residues
    added = 0
    for i in range(1, len(res)):
        r = res[i]
        if r.H is not None or r.name == "PRO":
            continue
        if r.N is None or r.CA is None or res[i - 1].C is None:
            continue
        pos = _hydrogen_position(res[i - 1].C.coord, r.N.coord, r.CA.coord)
        if pos is None:
            continue
        r.attach(Atom("H", pos, element="H", resname=r.name, chain=r.chain, resseq=r.resseq, icode=r.icode))
        added += 1
    if added:
        # keep the flat list in residue order: N, H, CA, C, O
        in_residues = {id(a) for r in res for a in r.atoms()}
        loose = [a for a in structure.atoms if id(a) not in in_residues]
        structure.atoms = [a for r in res for a in r.atoms()] + loose
        structure.renumber()
    return added


def validate_backbone_geometry(structure):
    """Residues with a bond length outside the physical range, as (index, bond, length)."""
    problems = []
    for i, r in enumerate(structure.residues):
        for (a_name, b_name), (lo, hi) in BOND_RANGES.items():
            a = getattr(r, a_name)
            b = getattr(r, b_name)
            if a is None or b is None:
                continue
            d = float(np.linalg.norm(a.coord - b.coord))
            if not (lo <= d <= hi):
                problems.append((i, f"{a_name}-{b_name}", d))
    return problems


def radius_of_gyration(coords):
    coords = np.asarray(coords, dtype=float)
    if len(coords) == 0:
        return 0.0
    centered = coords - coords.mean(axis=0)
    return float(np.sqrt(np.mean(np.sum(centered * centered, axis=1))))
