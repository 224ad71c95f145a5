"""
Shared fixtures. Sequences are short and sampler and optimizer step counts tiny so the
whole suite runs in seconds; the physics is exercised, not the convergence.
"""
import math
import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from quatfold.config import (
    AnnealingConfig,
    BasinConfig,
    FragmentConfig,
    LbfgsConfig,
    MonteCarloConfig,
    PipelineConfig,
    RelaxConfig,
    SphereSamplerConfig,
)
from quatfold.energy import EnergyModel
from quatfold.geometry import add_backbone_hydrogens, build_backbone

HELIX_PHI = math.radians(-60.0)
HELIX_PSI = math.radians(-45.0)


@pytest.fixture
def short_sequence():
    return "ACDEFG"


@pytest.fixture
def extended_chain():
    """Ten-residue chain at the default extended torsions, no hydrogens."""
    return build_backbone("ACDEFGHIKL")


@pytest.fixture
def helix_chain():
    """Twelve-residue ideal alpha helix with amide hydrogens."""
    n = 12
    s = build_backbone("A" * n, phi=np.full(n, HELIX_PHI), psi=np.full(n, HELIX_PSI))
    add_backbone_hydrogens(s)
    return s


@pytest.fixture
def hydrogenated_chain(short_sequence):
    s = build_backbone(short_sequence)
    add_backbone_hydrogens(s)
    return s


@pytest.fixture
def clashing_chain():
    """Extended chain with residue 4's CA dropped onto residue 0's CA."""
    s = build_backbone("AAAAAA")
    s.residues[4].CA.coord = s.residues[0].CA.coord.copy()
    return s


@pytest.fixture
def model():
    return EnergyModel()


@pytest.fixture
def fast_config():
    """Pipeline settings small enough for unit tests."""
    return PipelineConfig(
        samples_per_method=2,
        max_workers=2,
        sphere=SphereSamplerConfig(num_samples=2, slerp_steps=2),
        monte_carlo=MonteCarloConfig(steps=20),
        fragments=FragmentConfig(num_structures=2),
        basins=BasinConfig(num_structures=3),
        relax=RelaxConfig(max_steps=5),
        lbfgs=LbfgsConfig(max_iterations=2),
        annealing=AnnealingConfig(steps=20),
    )
