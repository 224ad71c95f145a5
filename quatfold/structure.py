import numpy as np
from typing import Dict, List, Optional

from .residues import to_one

BACKBONE_NAMES = ("N", "CA", "C", "O")


class Atom:
    __slots__ = ("serial", "name", "resname", "chain", "resseq", "icode", "altloc",
                 "element", "coord", "occupancy", "temp_factor", "residue")

    def __init__(self, name, coord, element=None, serial=0, resname="UNK", chain="A",
                 resseq=1, icode="", altloc="", occupancy=1.0, temp_factor=0.0):
        self.serial = serial
        self.name = name
        self.resname = resname
        self.chain = chain
        self.resseq = resseq
        self.icode = icode
        self.altloc = altloc
        self.element = (element or name[:1]).upper()
        self.coord = np.array(coord, dtype=float)
        self.occupancy = occupancy
        self.temp_factor = temp_factor
        self.residue = None

    def __repr__(self):
        return f"Atom({self.name} {self.resname}{self.resseq} {self.coord.round(3).tolist()})"


class Residue:
    def __init__(self, name, seq_index, chain="A", resseq=None, icode=""):
        self.name = name
        self.seq_index = seq_index
        self.chain = chain
        self.resseq = seq_index + 1 if resseq is None else resseq
        self.icode = icode
        self.N: Optional[Atom] = None
        self.CA: Optional[Atom] = None
        self.C: Optional[Atom] = None
        self.O: Optional[Atom] = None
        self.H: Optional[Atom] = None

    def attach(self, atom):
        if atom.name in BACKBONE_NAMES or atom.name == "H":
            setattr(self, atom.name, atom)
        atom.residue = self

    def atoms(self):
        return [a for a in (self.N, self.H, self.CA, self.C, self.O) if a is not None]

    def has_complete_backbone(self):
        return all(getattr(self, n) is not None for n in BACKBONE_NAMES)

    def __repr__(self):
        return f"Residue({self.name}{self.resseq}{self.icode} chain={self.chain})"


class Structure:
    """Ordered residues plus a flat atom list. Atom order is the coordinate order."""

    def __init__(self, name="model"):
        self.name = name
        self.residues: List[Residue] = []
        self.atoms: List[Atom] = []

    def __len__(self):
        return len(self.residues)

    @property
    def sequence(self):
        return "".join(to_one(r.name) for r in self.residues)

    def add_residue(self, residue, atoms=()):
        self.residues.append(residue)
        for atom in atoms:
            residue.attach(atom)
            self.atoms.append(atom)
        return residue

    def add_atom(self, residue, atom):
        residue.attach(atom)
        self.atoms.append(atom)

    def coords(self):
        if not self.atoms:
            return np.zeros((0, 3), dtype=float)
        return np.array([a.coord for a in self.atoms], dtype=float)

    def set_coords(self, coords):
        coords = np.asarray(coords, dtype=float)
        if coords.shape != (len(self.atoms), 3):
            raise ValueError(f"expected ({len(self.atoms)}, 3) coordinates, got {coords.shape}")
        for atom, xyz in zip(self.atoms, coords):
            atom.coord = xyz.copy()

    def ca_coords(self):
        return np.array([r.CA.coord for r in self.residues if r.CA is not None], dtype=float).reshape(-1, 3)

    def backbone_coords(self):
        out = []
        for r in self.residues:
            for n in BACKBONE_NAMES:
                a = getattr(r, n)
                if a is not None:
                    out.append(a.coord)
        return np.array(out, dtype=float).reshape(-1, 3)

    def has_hydrogens(self):
        return any(r.H is not None for r in self.residues)

    def renumber(self):
        for i, atom in enumerate(self.atoms, start=1):
            atom.serial = i

    def clone(self):
        """Deep copy: every atom duplicated, every residue relinked to its own copies."""
        twin = Structure(self.name)
        res_map: Dict[int, Residue] = {}
        for res in self.residues:
            dup_res = Residue(res.name, res.seq_index, chain=res.chain, resseq=res.resseq, icode=res.icode)
            res_map[id(res)] = dup_res
            twin.residues.append(dup_res)
        for atom in self.atoms:
            dup = Atom(atom.name, atom.coord.copy(), element=atom.element, serial=atom.serial,
                       resname=atom.resname, chain=atom.chain, resseq=atom.resseq,
                       icode=atom.icode, altloc=atom.altloc, occupancy=atom.occupancy,
                       temp_factor=atom.temp_factor)
            if atom.residue is not None:
                res_map[id(atom.residue)].attach(dup)
            twin.atoms.append(dup)
        return twin
