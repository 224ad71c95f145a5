import math

import numpy as np

from quatfold.energy import (
    CLASH_ENERGY,
    DEGENERATE_THRESHOLD,
    EnergyComponents,
    bonded_energy,
    compute_energy,
    compute_forces,
    is_degenerate,
    torsion_energy,
)
from quatfold.hbonds import detect_hbonds, hbond_energy, hbond_statistics
from quatfold.solvation import CA_RADIUS, PROBE_RADIUS, burial_statistics, classify_burial, residue_sasa
from quatfold.geometry import build_backbone


class TestComputeEnergy:
    def test_finite_for_extended_chain(self, extended_chain, model):
        e = model.evaluate(extended_chain)
        assert math.isfinite(e.total)
        assert not e.is_degenerate

    def test_pure_function_of_coordinates(self, extended_chain, model):
        a = model.evaluate(extended_chain).as_dict()
        b = model.evaluate(extended_chain).as_dict()
        assert a == b

    def test_clone_has_same_energy(self, hydrogenated_chain, model):
        assert model.total(hydrogenated_chain) == model.total(hydrogenated_chain.clone())

    def test_total_is_sum_of_components(self, extended_chain):
        e = compute_energy(extended_chain)
        parts = e.vdw + e.electrostatic + e.bond + e.angle + e.dihedral + e.hbond + e.solvation
        assert abs(e.total - parts) < 1e-9

    def test_coincident_atoms_are_degenerate(self, clashing_chain, model):
        e = model.total(clashing_chain)
        assert e >= CLASH_ENERGY
        assert is_degenerate(e)

    def test_clash_distance_includes_adjacent_residues(self, model):
        s = build_backbone("AAAAAA")
        c0 = s.residues[0].C.coord.copy()
        s.residues[1].N.coord = c0 + np.array([0.05, 0.0, 0.0])
        assert model.total(s) >= CLASH_ENERGY
        s.residues[1].N.coord = c0 + np.array([0.2, 0.0, 0.0])
        assert not is_degenerate(model.total(s))

    def test_solvation_switch(self, extended_chain):
        e = compute_energy(extended_chain, include_solvation=False)
        assert e.solvation == 0.0

    def test_ideal_bonds_nearly_strain_free(self, extended_chain):
        bond, angle = bonded_energy(extended_chain)
        assert 0.0 <= bond < 5.0
        assert 0.0 <= angle < 5.0

    def test_forces_shape_and_finite(self, hydrogenated_chain, model):
        f = model.forces(hydrogenated_chain)
        assert f.shape == (len(hydrogenated_chain.atoms), 3)
        assert np.all(np.isfinite(f))

    def test_forces_sum_to_zero(self, extended_chain):
        f = compute_forces(extended_chain)
        assert np.allclose(f.sum(axis=0), 0.0, atol=1e-8)


class TestDegenerate:
    def test_threshold(self):
        assert is_degenerate(DEGENERATE_THRESHOLD)
        assert is_degenerate(-2 * DEGENERATE_THRESHOLD)
        assert is_degenerate(math.nan)
        assert is_degenerate(math.inf)
        assert is_degenerate(None)
        assert not is_degenerate(-150.0)

    def test_components_flag(self):
        assert EnergyComponents(vdw=2e12).is_degenerate
        assert not EnergyComponents(vdw=-3.0, bond=1.0).is_degenerate


class TestTorsionEnergy:
    def test_basin_centre_is_minimum(self):
        assert abs(torsion_energy(math.radians(-60), math.radians(-45))) < 1e-9

    def test_forbidden_region_costs_more(self):
        allowed = torsion_energy(math.radians(-65), math.radians(-40))
        forbidden = torsion_energy(math.radians(100), math.radians(-100))
        assert forbidden > allowed

    def test_periodic(self):
        a = torsion_energy(math.radians(-120), math.radians(120))
        b = torsion_energy(math.radians(-120 + 360), math.radians(120 - 360))
        assert abs(a - b) < 1e-9

    def test_undefined_torsions_cost_nothing(self):
        assert torsion_energy(math.nan, 1.0) == 0.0


class TestHydrogenBonds:
    def test_energy_at_optimum(self):
        assert abs(hbond_energy(2.9, 180.0) + 5.0) < 1e-12

    def test_angle_factor(self):
        assert abs(hbond_energy(2.9, 120.0) + 3.75) < 1e-12

    def test_extended_chain_has_none(self, hydrogenated_chain):
        assert detect_hbonds(hydrogenated_chain) == []

    def test_no_hydrogens_no_bonds(self, extended_chain):
        assert detect_hbonds(extended_chain) == []

    def test_helix_forms_i_to_i_plus_4_bonds(self, helix_chain):
        stats = hbond_statistics(helix_chain)
        assert stats["total"] >= 1
        assert stats["helix"] >= 1
        assert stats["energy"] < 0.0


class TestSolvation:
    def test_isolated_residue_fully_exposed(self):
        s = build_backbone("A")
        R = CA_RADIUS + PROBE_RADIUS
        assert abs(residue_sasa(s)[0] - 4 * math.pi * R * R) < 1e-9

    def test_neighbours_reduce_area(self, extended_chain):
        sasa = residue_sasa(extended_chain)
        R = CA_RADIUS + PROBE_RADIUS
        assert sasa[5] < 4 * math.pi * R * R

    def test_classification(self):
        assert classify_burial(5.0) == "buried"
        assert classify_burial(50.0) == "partial"
        assert classify_burial(150.0) == "exposed"
        assert classify_burial(math.nan) == "unknown"

    def test_burial_counts_cover_chain(self, extended_chain):
        stats = burial_statistics(extended_chain)
        assert stats["buried"] + stats["partial"] + stats["exposed"] + stats["unknown"] == 10
