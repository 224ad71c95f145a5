import math

import numpy as np
import pytest

from quatfold.errors import InputError
from quatfold.geometry import (
    BOND_PARAMS,
    DEFAULT_PHI,
    DEFAULT_PSI,
    add_backbone_hydrogens,
    bond_angle,
    build_backbone,
    compute_torsions,
    dihedral,
    radius_of_gyration,
    set_torsions,
    validate_backbone_geometry,
)


def _dist(a, b):
    return float(np.linalg.norm(a.coord - b.coord))


class TestBuildBackbone:
    def test_atom_counts(self, extended_chain):
        assert len(extended_chain) == 10
        assert len(extended_chain.atoms) == 40
        assert extended_chain.sequence == "ACDEFGHIKL"

    def test_first_nitrogen_at_origin(self, extended_chain):
        assert np.allclose(extended_chain.residues[0].N.coord, 0.0)

    def test_bond_lengths_are_ideal(self, extended_chain):
        res = extended_chain.residues
        for i, r in enumerate(res):
            assert abs(_dist(r.N, r.CA) - BOND_PARAMS["n_ca"]) < 1e-6
            assert abs(_dist(r.CA, r.C) - BOND_PARAMS["ca_c"]) < 1e-6
            assert abs(_dist(r.C, r.O) - BOND_PARAMS["c_o"]) < 1e-6
            if i + 1 < len(res):
                assert abs(_dist(r.C, res[i + 1].N) - BOND_PARAMS["c_n"]) < 1e-6

    def test_bond_angles_are_ideal(self, extended_chain):
        r = extended_chain.residues[3]
        angle = bond_angle(r.N.coord, r.CA.coord, r.C.coord)
        assert abs(angle - BOND_PARAMS["ang_N_CA_C"]) < 1e-6

    def test_extended_chain_runs_along_x(self, extended_chain):
        ca = extended_chain.ca_coords()
        assert np.all(np.diff(ca[:, 0]) > 0)

    def test_all_twenty_residues(self):
        s = build_backbone("ACDEFGHIKLMNPQRSTVWY")
        assert len(s) == 20
        assert len(s.atoms) == 80
        assert np.all(np.diff(s.ca_coords()[:, 0]) >= 0)

    def test_clone_is_independent(self, extended_chain):
        twin = extended_chain.clone()
        before = extended_chain.coords().copy()
        twin.residues[2].CA.coord += 5.0
        assert np.allclose(extended_chain.coords(), before)
        assert twin.residues[2].CA is not extended_chain.residues[2].CA

    def test_no_geometry_problems(self, extended_chain):
        assert validate_backbone_geometry(extended_chain) == []

    def test_empty_sequence_rejected(self):
        with pytest.raises(InputError):
            build_backbone("")

    def test_wrong_torsion_length_rejected(self):
        with pytest.raises(InputError):
            build_backbone("AAAA", phi=[0.0, 0.0])

    def test_nan_torsions_fall_back_to_extended(self):
        a = build_backbone("AAAA")
        b = build_backbone("AAAA", phi=[np.nan] * 4, psi=[np.nan] * 4)
        assert np.allclose(a.coords(), b.coords())


class TestTorsions:
    def test_default_torsions_recovered(self, extended_chain):
        phi, psi = compute_torsions(extended_chain)
        assert math.isnan(phi[0])
        assert math.isnan(psi[-1])
        assert np.allclose(phi[1:], DEFAULT_PHI, atol=1e-6)
        assert np.allclose(psi[:-1], DEFAULT_PSI, atol=1e-6)

    def test_set_torsions_round_trip(self, extended_chain):
        n = len(extended_chain)
        rng = np.random.default_rng(3)
        phi = rng.uniform(-math.pi, math.pi, n)
        psi = rng.uniform(-math.pi, math.pi, n)
        set_torsions(extended_chain, phi, psi)
        got_phi, got_psi = compute_torsions(extended_chain)
        d_phi = (got_phi[1:] - phi[1:] + math.pi) % (2 * math.pi) - math.pi
        d_psi = (got_psi[:-1] - psi[:-1] + math.pi) % (2 * math.pi) - math.pi
        assert np.max(np.abs(d_phi)) < 1e-6
        assert np.max(np.abs(d_psi)) < 1e-6

    def test_set_torsions_keeps_atom_identity(self, extended_chain):
        before = [id(a) for a in extended_chain.atoms]
        set_torsions(extended_chain, np.zeros(10) - 1.0, np.zeros(10) - 0.8)
        assert [id(a) for a in extended_chain.atoms] == before

    def test_dihedral_sign(self):
        a = np.array([1.0, 0.0, 0.0])
        b = np.array([0.0, 0.0, 0.0])
        c = np.array([0.0, 1.0, 0.0])
        d_pos = np.array([0.0, 1.0, 1.0])
        d_neg = np.array([0.0, 1.0, -1.0])
        assert abs(abs(dihedral(a, b, c, d_pos)) - math.pi / 2) < 1e-9
        assert abs(dihedral(a, b, c, d_pos) + dihedral(a, b, c, d_neg)) < 1e-9

    def test_dihedral_degenerate_is_nan(self):
        p = np.zeros(3)
        assert math.isnan(dihedral(p, p, p, p))


class TestHydrogens:
    def test_skips_first_residue_and_proline(self):
        s = build_backbone("APG")
        added = add_backbone_hydrogens(s)
        assert added == 1
        assert s.residues[0].H is None
        assert s.residues[1].H is None
        assert s.residues[2].H is not None

    def test_idempotent(self, hydrogenated_chain):
        assert add_backbone_hydrogens(hydrogenated_chain) == 0

    def test_nh_bond_length(self, hydrogenated_chain):
        r = hydrogenated_chain.residues[2]
        assert abs(_dist(r.N, r.H) - BOND_PARAMS["n_h"]) < 1e-6

    def test_atom_order_and_serials(self, hydrogenated_chain):
        names = [a.name for a in hydrogenated_chain.residues[1].atoms()]
        assert names == ["N", "H", "CA", "C", "O"]
        serials = [a.serial for a in hydrogenated_chain.atoms]
        assert serials == list(range(1, len(serials) + 1))

    def test_hydrogens_follow_torsion_changes(self, hydrogenated_chain):
        n = len(hydrogenated_chain)
        set_torsions(hydrogenated_chain, np.full(n, -1.0), np.full(n, -0.8))
        r = hydrogenated_chain.residues[3]
        assert abs(_dist(r.N, r.H) - BOND_PARAMS["n_h"]) < 1e-6


class TestRadiusOfGyration:
    def test_helix_more_compact_than_strand(self, extended_chain, helix_chain):
        assert radius_of_gyration(helix_chain.ca_coords()[:10]) < radius_of_gyration(extended_chain.ca_coords())

    def test_empty(self):
        assert radius_of_gyration(np.zeros((0, 3))) == 0.0
