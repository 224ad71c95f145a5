from dataclasses import replace

import numpy as np
import pytest

from quatfold.basins import pure_basin_torsions
from quatfold.candidate import Candidate
from quatfold.config import BasinConfig
from quatfold.ensemble import cluster_candidates, distance_matrix, select_diverse
from quatfold.geometry import build_backbone, set_torsions
from quatfold.pipeline import run_pipeline
from quatfold.secondary import predict_secondary_structure

SEQ = "ACDEFGHIKL"


def _candidate(basin, score):
    s = build_backbone(SEQ)
    set_torsions(s, *pure_basin_torsions(SEQ, basin))
    return Candidate(structure=s, method="basins", energy=score, rank_score=score)


@pytest.fixture
def two_families():
    # helix, helix, sheet, sheet; lower score is better
    return [_candidate("alpha_helix", 1.0), _candidate("alpha_helix", 2.0),
            _candidate("beta_sheet", 3.0), _candidate("beta_sheet", 4.0)]


class TestSelectDiverse:
    def test_distance_matrix(self, two_families):
        D = distance_matrix(two_families)
        assert D.shape == (4, 4)
        assert np.allclose(D, D.T)
        assert np.allclose(np.diag(D), 0.0)
        assert D[0, 1] == pytest.approx(0.0, abs=1e-6)
        assert D[0, 2] > 30.0

    def test_starts_from_best_then_farthest(self, two_families):
        picked = select_diverse(two_families[::-1], 2)
        assert [c.rank_score for c in picked] == [1.0, 3.0]

    def test_sizes(self, two_families):
        assert select_diverse(two_families, 0) == []
        assert select_diverse([], 3) == []
        assert [c.rank_score for c in select_diverse(two_families[::-1], 10)] == [1.0, 2.0, 3.0, 4.0]


class TestClustering:
    def test_two_families(self, two_families):
        clusters = cluster_candidates(two_families, 2)
        assert [c.size for c in clusters] == [2, 2]
        assert [c.medoid.rank_score for c in clusters] == [1.0, 3.0]
        for c in clusters:
            assert c.medoid in c.members

    def test_members_partition_input(self, two_families):
        clusters = cluster_candidates(two_families, 3)
        members = [id(m) for c in clusters for m in c.members]
        assert sorted(members) == sorted(id(c) for c in two_families)

    def test_more_clusters_than_items(self, two_families):
        assert len(cluster_candidates(two_families[:1], 5)) == 1
        assert cluster_candidates([], 2) == []


class TestPipelineEnsemble:
    def test_diverse_and_clusters_reported(self, fast_config):
        cfg = replace(fast_config, use_sphere=False, use_monte_carlo=False, diverse_count=3, num_clusters=2)
        result = run_pipeline(SEQ, cfg)
        valid = [o for o in result.candidates if not o.candidate.degenerate]
        assert len(result.diverse) == min(3, len(valid))
        assert result.diverse[0] is valid[0]
        assert sum(c.size for c in result.clusters) == len(valid)

    def test_disabled(self, fast_config):
        cfg = replace(fast_config, use_sphere=False, use_monte_carlo=False, diverse_count=0, num_clusters=0)
        result = run_pipeline(SEQ, cfg)
        assert result.diverse == [] and result.clusters == []

    def test_constrained_basins_use_predicted_secondary_structure(self, fast_config):
        messages = []
        cfg = replace(fast_config, use_sphere=False, use_monte_carlo=False, use_fragments=False,
                      basins=BasinConfig(num_structures=2, mode="constrained"))
        result = run_pipeline(SEQ, cfg, log_callback=messages.append)
        assert result.secondary_structure == predict_secondary_structure(SEQ).labels
        assert any("Predicted secondary structure" in m for m in messages)
        assert result.candidates
