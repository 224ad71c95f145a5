import math

import numpy as np
import pytest

from quatfold import quaternion as quat
from quatfold.errors import ComparisonError
from quatfold.geometry import build_backbone
from quatfold.structure import Structure
from quatfold.validation import (
    aligned_coordinates,
    compare_structures,
    gdt_ts,
    quality_label,
    rmsd,
    tm_d0,
    tm_score,
)


@pytest.fixture
def ca_pair():
    rng = np.random.default_rng(7)
    P = rng.normal(0.0, 5.0, (20, 3))
    Q = P + rng.normal(0.0, 1.0, (20, 3))
    return P, Q


class TestMetrics:
    def test_identity(self, extended_chain):
        ca = extended_chain.ca_coords()
        assert rmsd(ca, ca) == 0.0
        assert abs(tm_score(ca, ca) - 1.0) < 1e-12
        assert gdt_ts(ca, ca) == 1.0

    def test_symmetric(self, ca_pair):
        P, Q = ca_pair
        assert abs(rmsd(P, Q) - rmsd(Q, P)) < 1e-12
        assert abs(rmsd(P, Q, superpose=True) - rmsd(Q, P, superpose=True)) < 1e-9

    def test_translation_invariant(self, ca_pair):
        P, _ = ca_pair
        assert rmsd(P, P + np.array([5.0, -3.0, 2.0])) < 1e-12

    def test_superposition_removes_rotation(self, ca_pair):
        P, _ = ca_pair
        R = quat.to_rotation_matrix(quat.from_axis_angle([1, 2, 3], 0.9))
        rotated = P @ R.T
        assert rmsd(P, rotated) > 1.0
        assert rmsd(P, rotated, superpose=True) < 1e-8

    def test_superposition_never_worse(self, ca_pair):
        P, Q = ca_pair
        assert rmsd(P, Q, superpose=True) <= rmsd(P, Q) + 1e-12

    def test_tm_and_gdt_follow_superpose_flag(self, ca_pair):
        P, _ = ca_pair
        R = quat.to_rotation_matrix(quat.from_axis_angle([1, 2, 3], 0.9))
        rotated = P @ R.T
        assert tm_score(P, rotated) < 0.5
        assert gdt_ts(P, rotated) < 0.9
        assert tm_score(P, rotated, superpose=True) == pytest.approx(1.0)
        assert gdt_ts(P, rotated, superpose=True) == pytest.approx(1.0)

    def test_ranges(self, ca_pair):
        P, Q = ca_pair
        assert 0.0 <= tm_score(P, Q) <= 1.0
        assert 0.0 <= gdt_ts(P, Q) <= 1.0

    def test_shape_mismatch(self):
        assert math.isnan(rmsd(np.zeros((3, 3)), np.zeros((4, 3))))
        assert tm_score(np.zeros((3, 3)), np.zeros((4, 3))) == 0.0

    def test_tm_d0(self):
        assert tm_d0(10) == 0.5
        assert tm_d0(15) == 0.5
        assert abs(tm_d0(100) - (1.24 * 85 ** (1.0 / 3.0) - 1.8)) < 1e-12


class TestQualityLabel:
    @pytest.mark.parametrize("r,tm,label", [
        (1.0, 0.8, "Excellent"),
        (1.0, 0.55, "Good"),
        (3.0, 0.55, "Good"),
        (3.0, 0.2, "Acceptable"),
        (4.9, 0.9, "Acceptable"),
        (6.0, 0.9, "Poor"),
        (math.nan, 0.0, "Undefined"),
    ])
    def test_labels(self, r, tm, label):
        assert quality_label(r, tm) == label


class TestCompareStructures:
    def test_self_comparison(self, extended_chain):
        res = compare_structures(extended_chain, extended_chain.clone())
        assert res.rmsd == 0.0
        assert res.label == "Excellent"
        assert res.atom_set == "CA"
        assert res.n_aligned == 10

    def test_length_mismatch_truncates(self):
        a = build_backbone("AAAAAAAAAA")
        b = build_backbone("AAAAAAAA")
        res = compare_structures(a, b)
        assert res.atom_set == "truncated"
        assert res.n_aligned == 32
        assert math.isfinite(res.rmsd)

    @pytest.mark.parametrize("superpose", [False, True])
    def test_partial_model_scored_against_full_reference(self, superpose):
        seq = "ACDEFGHIKLMNPQRSTVWY" * 3
        reference = build_backbone(seq)
        prefix = build_backbone(seq[:10])
        res = compare_structures(prefix, reference, superpose=superpose)
        assert res.atom_set == "truncated"
        assert res.n_aligned == 40
        # 40 of 240 reference backbone atoms are covered
        assert res.tm_score <= 40 / 240 + 1e-9
        assert res.gdt_ts <= 40 / 240 + 1e-9
        assert res.label != "Excellent"

    def test_target_length_counts_unaligned_positions(self):
        P = np.zeros((5, 3))
        P[:, 0] = np.arange(5) * 3.8
        assert tm_score(P, P.copy()) == pytest.approx(1.0)
        assert tm_score(P, P.copy(), target_length=20) == pytest.approx(0.25)
        assert gdt_ts(P, P.copy(), target_length=10) == pytest.approx(0.5)
        # a target shorter than the aligned set is never used
        assert tm_score(P, P.copy(), target_length=2) == pytest.approx(1.0)

    def test_strict_mismatch_raises(self):
        with pytest.raises(ComparisonError):
            aligned_coordinates(build_backbone("AAAA"), build_backbone("AAA"), strict=True)

    def test_empty_reference_undefined(self, extended_chain):
        res = compare_structures(extended_chain, Structure("empty"))
        assert math.isnan(res.rmsd)
        assert res.label == "Undefined"

    def test_superpose_flag_recorded(self, extended_chain):
        assert compare_structures(extended_chain, extended_chain, superpose=True).superposed
