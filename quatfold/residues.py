import re

from .errors import InputError

ONE_TO_THREE = {
    "A": "ALA", "R": "ARG", "N": "ASN", "D": "ASP", "C": "CYS",
    "Q": "GLN", "E": "GLU", "G": "GLY", "H": "HIS", "I": "ILE",
    "L": "LEU", "K": "LYS", "M": "MET", "F": "PHE", "P": "PRO",
    "S": "SER", "T": "THR", "W": "TRP", "Y": "TYR", "V": "VAL"
}
THREE_TO_ONE = {v: k for k, v in ONE_TO_THREE.items()}
# Common modified residues found in deposited structures
THREE_TO_ONE.update({"MSE": "M", "SEC": "C", "HSD": "H", "HSE": "H", "HIE": "H", "HID": "H"})

STANDARD_AA = set(ONE_TO_THREE)

# Kyte-Doolittle hydropathy
HYDROPHOBICITY = {
    "A": 1.8, "R": -4.5, "N": -3.5, "D": -3.5, "C": 2.5,
    "Q": -3.5, "E": -3.5, "G": -0.4, "H": -3.2, "I": 4.5,
    "L": 3.8, "K": -3.9, "M": 1.9, "F": 2.8, "P": -1.6,
    "S": -0.8, "T": -0.7, "W": -0.9, "Y": -1.3, "V": 4.2
}

HYDROPHOBIC = set("AVILMFWC")


def to_three(aa):
    return ONE_TO_THREE.get(aa.upper(), "UNK")


def to_one(resname):
    return THREE_TO_ONE.get(resname.upper(), "X")


def clean_sequence(sequence):
    """Strip whitespace and digits, upper-case. Does not validate."""
    return re.sub(r"[^A-Za-z]", "", sequence or "").upper()


def validate_sequence(sequence):
    seq = clean_sequence(sequence)
    if not seq:
        raise InputError("empty sequence")
    bad = sorted(set(seq) - STANDARD_AA - {"X"})
    if bad:
        raise InputError(f"invalid residue codes in sequence: {''.join(bad)}")
    return seq
