"""
Sequence-only secondary structure from windowed Chou-Fasman propensities.

Used to drive constrained basin sampling when no secondary structure is
supplied. Labels are H (helix), E (strand) and C (coil).
"""
from dataclasses import dataclass, field
from typing import List, Tuple

from .residues import clean_sequence

HELIX_PROPENSITY = {
    "A": 1.42, "C": 0.70, "D": 1.01, "E": 1.51, "F": 1.13,
    "G": 0.57, "H": 1.00, "I": 1.08, "K": 1.16, "L": 1.21,
    "M": 1.45, "N": 0.67, "P": 0.57, "Q": 1.11, "R": 0.98,
    "S": 0.77, "T": 0.83, "V": 1.06, "W": 1.08, "Y": 0.69,
}
SHEET_PROPENSITY = {
    "A": 0.83, "C": 1.19, "D": 0.54, "E": 0.37, "F": 1.38,
    "G": 0.75, "H": 0.87, "I": 1.60, "K": 0.74, "L": 1.30,
    "M": 1.05, "N": 0.89, "P": 0.55, "Q": 1.10, "R": 0.93,
    "S": 0.75, "T": 1.19, "V": 1.70, "W": 1.37, "Y": 1.47,
}

WINDOW = 6
HELIX_THRESHOLD = 1.03
SHEET_THRESHOLD = 1.05
MIN_HELIX = 4
MIN_SHEET = 3
COIL_CONFIDENCE = 0.5


@dataclass
class SecondaryStructurePrediction:
    sequence: str
    labels: str = ""
    confidence: List[float] = field(default_factory=list)

    def __str__(self):
        return self.labels

    def regions(self, label) -> List[Tuple[int, int]]:
        """Half-open [start, end) runs of one label."""
        out = []
        start = None
        for i, c in enumerate(self.labels + "\0"):
            if c == label and start is None:
                start = i
            elif c != label and start is not None:
                out.append((start, i))
                start = None
        return out

    def helix_regions(self):
        return self.regions("H")

    def sheet_regions(self):
        return self.regions("E")

    def accuracy(self, true_labels):
        """Fraction of matching labels; 0 when the lengths differ."""
        if len(true_labels) != len(self.labels) or not self.labels:
            return 0.0
        return sum(a == b for a, b in zip(self.labels, true_labels)) / len(self.labels)


def _window_scores(seq: str, i: int) -> Tuple[float, float]:
    half = WINDOW // 2
    window = [c for c in seq[max(0, i - half):min(len(seq), i + half + 1)] if c in HELIX_PROPENSITY]
    if not window:
        return 0.0, 0.0
    h = sum(HELIX_PROPENSITY[c] for c in window) / len(window)
    e = sum(SHEET_PROPENSITY[c] for c in window) / len(window)
    return h, e


def _drop_short_runs(labels: List[str], label: str, min_length: int) -> List[str]:
    out = list(labels)
    i = 0
    while i < len(out):
        if out[i] != label:
            i += 1
            continue
        start = i
        while i < len(out) and out[i] == label:
            i += 1
        if i - start < min_length:
            out[start:i] = ["C"] * (i - start)
    return out


def predict_secondary_structure(sequence) -> SecondaryStructurePrediction:
    seq = clean_sequence(sequence)
    labels, confidence = [], []
    for i in range(len(seq)):
        h, e = _window_scores(seq, i)
        if h > HELIX_THRESHOLD and h > e:
            labels.append("H")
            conf = (h - HELIX_THRESHOLD) / HELIX_THRESHOLD
        elif e > SHEET_THRESHOLD and e > h:
            labels.append("E")
            conf = (e - SHEET_THRESHOLD) / SHEET_THRESHOLD
        else:
            labels.append("C")
            conf = COIL_CONFIDENCE
        confidence.append(min(1.0, max(0.0, conf)))
    # helices shorter than 4 and strands shorter than 3 become coil
    labels = _drop_short_runs(labels, "H", MIN_HELIX)
    labels = _drop_short_runs(labels, "E", MIN_SHEET)
    return SecondaryStructurePrediction(seq, "".join(labels), confidence)
