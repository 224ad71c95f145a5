import numpy as np
import pytest

from quatfold.basins import sample_basins
from quatfold.config import BasinConfig
from quatfold.geometry import compute_torsions
from quatfold.secondary import (
    SecondaryStructurePrediction,
    _drop_short_runs,
    predict_secondary_structure,
)


class TestPrediction:
    @pytest.mark.parametrize("seq,label", [
        ("AAAAAAAAAA", "H"),
        ("VVVVVVVV", "E"),
        ("GPGPGPGP", "C"),
    ])
    def test_uniform_sequences(self, seq, label):
        pred = predict_secondary_structure(seq)
        assert pred.labels == label * len(seq)
        assert len(pred.confidence) == len(seq)
        assert all(0.0 <= c <= 1.0 for c in pred.confidence)

    def test_coil_confidence(self):
        assert predict_secondary_structure("GPGPGP").confidence == [0.5] * 6

    def test_input_cleaned(self):
        pred = predict_secondary_structure(" aaaa aaaa\n")
        assert pred.sequence == "AAAAAAAA"
        assert str(pred) == "HHHHHHHH"

    def test_short_runs_become_coil(self):
        labels = _drop_short_runs(list("CHHHCEECEEE"), "H", 4)
        assert "".join(labels) == "CCCCCEECEEE"
        assert "".join(_drop_short_runs(labels, "E", 3)) == "CCCCCCCCEEE"

    def test_regions(self):
        pred = SecondaryStructurePrediction("A" * 10, "HHHHCCEEEH")
        assert pred.helix_regions() == [(0, 4), (9, 10)]
        assert pred.sheet_regions() == [(6, 9)]
        assert pred.regions("C") == [(4, 6)]

    def test_accuracy(self):
        pred = SecondaryStructurePrediction("AAAA", "HHCC")
        assert pred.accuracy("HHHH") == 0.5
        assert pred.accuracy("HHH") == 0.0


class TestConstrainedBasins:
    def test_predicted_when_not_given(self, model):
        cfg = BasinConfig(num_structures=2, mode="constrained", noise_scale=0.0)
        cands = sample_basins("AAAAAAAAAA", config=cfg, model=model)
        assert len(cands) == 2
        for c in cands:
            phi, psi = compute_torsions(c.structure)
            assert np.allclose(np.degrees(phi[1:]), -60.0, atol=1e-6)
            assert np.allclose(np.degrees(psi[:-1]), -45.0, atol=1e-6)

    def test_given_string_wins(self, model):
        cfg = BasinConfig(num_structures=1, mode="constrained", noise_scale=0.0,
                          secondary_structure="EEEEEEEEEE")
        phi, psi = compute_torsions(sample_basins("AAAAAAAAAA", config=cfg, model=model)[0].structure)
        assert np.allclose(np.degrees(phi[1:]), -120.0, atol=1e-6)
