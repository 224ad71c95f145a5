import os
import logging

from Bio import SeqIO

from .errors import InputError
from .residues import clean_sequence

logger = logging.getLogger(__name__)

_PROTEIN_LETTERS = frozenset("ACDEFGHIKLMNPQRSTVWYX")
RAW_SEQUENCE_ID = "Raw_Sequence"


def _raw_sequence(path):
    """Whole file as one sequence, header lines dropped; None unless mostly amino-acid letters."""
    with open(path, encoding="utf-8", errors="ignore") as handle:
        body = "".join(line for line in handle if not line.startswith(">"))
    letters = [c.upper() for c in body if c.isalpha()]
    if not letters:
        return None
    protein = sum(1 for c in letters if c in _PROTEIN_LETTERS)
    if protein * 2 <= len(letters):
        logger.warning(f"{path}: only {protein}/{len(letters)} letters are amino-acid codes")
        return None
    return "".join(letters)


def load_fasta(file_path):
    """
    (record id, cleaned sequence) pairs from a FASTA file. A file without
    FASTA records is read as a single raw sequence.
    """
    if not os.path.isfile(file_path):
        raise InputError(f"File not found: {file_path}")

    records = []
    try:
        for record in SeqIO.parse(file_path, "fasta"):
            seq = clean_sequence(str(record.seq))
            if seq:
                records.append((record.id, seq))
            else:
                logger.warning(f"{file_path}: record {record.id} has no residues, skipped")
    except ValueError as e:
        logger.warning(f"FASTA parse failed for {file_path}: {e}; trying raw sequence")
        records = []

    if records:
        return records
    raw = _raw_sequence(file_path)
    return [(RAW_SEQUENCE_ID, raw)] if raw else []
