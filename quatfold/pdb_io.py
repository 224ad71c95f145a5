import os
import logging
from typing import Dict, Tuple

from .errors import InputError
from .structure import Atom, Residue, Structure

logger = logging.getLogger(__name__)

_KEEP = {"N": "N", "CA": "CA", "C": "C", "O": "O", "H": "H", "HN": "H"}


def _parse_atom_line(line):
    """Fixed-column ATOM/HETATM record -> Atom, or None for a malformed line."""
    if len(line) < 54:
        return None
    try:
        serial_txt = line[6:11].strip()
        serial = int(serial_txt) if serial_txt else 0
        name = line[12:16].strip()
        altloc = line[16:17].strip()
        resname = line[17:20].strip()
        chain = line[21:22].strip() or "A"
        resseq = int(line[22:26])
        icode = line[26:27].strip()
        x = float(line[30:38])
        y = float(line[38:46])
        z = float(line[46:54])
        occ_txt = line[54:60].strip()
        tf_txt = line[60:66].strip()
        occupancy = float(occ_txt) if occ_txt else 1.0
        temp_factor = float(tf_txt) if tf_txt else 0.0
    except ValueError:
        return None
    element = line[76:78].strip() if len(line) >= 78 else ""
    if not element:
        element = name.lstrip("0123456789")[:1]
    return Atom(name, (x, y, z), element=element, serial=serial, resname=resname, chain=chain,
                resseq=resseq, icode=icode, altloc=altloc, occupancy=occupancy,
                temp_factor=temp_factor)


def parse_pdb_text(text, name="reference"):
    """
    Backbone-only Structure from PDB text. Reads the first model; residues are
    keyed by (chain, resSeq, iCode) in file order. Malformed lines are skipped.
    """
    structure = Structure(name)
    residues: Dict[Tuple[str, int, str], Residue] = {}
    skipped = 0
    for line in text.splitlines():
        record = line[:6].strip()
        if record in ("END", "ENDMDL"):
            break
        if record not in ("ATOM", "HETATM"):
            continue
        atom = _parse_atom_line(line)
        if atom is None:
            skipped += 1
            continue
        if atom.altloc not in ("", "A", "1"):
            continue
        slot = _KEEP.get(atom.name)
        if slot is None:
            continue
        atom.name = slot
        key = (atom.chain, atom.resseq, atom.icode)
        res = residues.get(key)
        if res is None:
            res = Residue(atom.resname, len(structure.residues), chain=atom.chain,
                          resseq=atom.resseq, icode=atom.icode)
            residues[key] = res
            structure.residues.append(res)
        if getattr(res, slot) is not None:
            continue
        structure.add_atom(res, atom)
    if skipped:
        logger.debug(f"Skipped {skipped} malformed coordinate lines in {name}")
    # flat list in residue order
    structure.atoms = [a for r in structure.residues for a in r.atoms()]
    return structure


def parse_pdb(path):
    if not os.path.exists(path):
        raise InputError(f"File not found: {path}")
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        text = f.read()
    name = os.path.splitext(os.path.basename(path))[0]
    return parse_pdb_text(text, name=name)


def format_atom_line(atom, serial=None):
    serial = atom.serial if serial is None else serial
    # 4-char names start in column 13, shorter ones in column 14
    name = atom.name if len(atom.name) >= 4 else f" {atom.name:<3s}"
    x, y, z = atom.coord
    return (f"ATOM  {serial:5d} {name}{atom.altloc or ' ':1s}{atom.resname:>3s} "
            f"{atom.chain:1s}{atom.resseq:4d}{atom.icode or ' ':1s}   "
            f"{x:8.3f}{y:8.3f}{z:8.3f}{atom.occupancy:6.2f}{atom.temp_factor:6.2f}"
            f"          {atom.element:>2s}")


def to_pdb_text(structure, remarks=()):
    lines = [f"REMARK   1 {r}" for r in remarks]
    serial = 1
    last = None
    for atom in structure.atoms:
        if last is not None and atom.chain != last:
            lines.append("TER")
        lines.append(format_atom_line(atom, serial=serial))
        serial += 1
        last = atom.chain
    lines.append("TER")
    lines.append("END")
    return "\n".join(lines) + "\n"


def write_pdb(structure, out_path, remarks=()):
    with open(out_path, "w", encoding="utf-8") as f:
        f.write(to_pdb_text(structure, remarks=remarks))
    return out_path
