import math
import threading
from dataclasses import replace

import pytest

from quatfold import pipeline
from quatfold.geometry import build_backbone
from quatfold.pipeline import run_pipeline
from quatfold.report import result_to_dict
from quatfold.scoring import ScoringPolicy

SEQ = "ACDEFGH"


class TestRunPipeline:
    def test_invalid_sequence_reported(self, fast_config):
        result = run_pipeline("AC1?J", fast_config)
        assert result.candidates == []
        assert result.best is None
        assert any("InputError" in e for e in result.errors)

    def test_empty_sequence_reported(self, fast_config):
        result = run_pipeline("", fast_config)
        assert result.errors
        assert result.summary.total == 0

    def test_all_methods_contribute(self, fast_config):
        result = run_pipeline(SEQ, fast_config)
        assert result.errors == []
        s = result.summary
        assert s.total == s.succeeded + s.failed
        assert s.succeeded == len(result.candidates)
        assert set(s.per_method) == {"sphere", "monte_carlo", "fragments", "basins"}
        assert math.isfinite(s.energy_min)
        assert s.energy_min <= s.energy_mean

    def test_ranked_best_first(self, fast_config):
        result = run_pipeline(SEQ, fast_config)
        scores = [o.candidate.rank_score for o in result.candidates]
        assert scores == sorted(scores)
        assert result.best is result.candidates[0]
        for o in result.candidates:
            assert o.candidate.structure.sequence == SEQ
            assert [d.method for d in o.candidate.diagnostics] == ["gentle"]

    def test_deterministic(self, fast_config):
        a = run_pipeline(SEQ, fast_config)
        b = run_pipeline(SEQ, replace(fast_config, max_workers=1))
        assert [(o.index, o.energy) for o in a.candidates] == [(o.index, o.energy) for o in b.candidates]

    def test_reference_comparison(self, fast_config):
        reference = build_backbone(SEQ)
        result = run_pipeline(SEQ, fast_config, reference=reference)
        assert all(o.comparison is not None for o in result.candidates)
        assert math.isfinite(result.summary.best_rmsd)
        assert 0.0 <= result.summary.best_tm_score <= 1.0
        # reference is only read
        assert reference.coords().shape == (len(SEQ) * 4, 3)

    def test_only_selected_methods(self, fast_config):
        cfg = replace(fast_config, use_sphere=False, use_monte_carlo=False, use_fragments=False)
        result = run_pipeline(SEQ, cfg)
        assert set(result.summary.per_method) == {"basins"}

    def test_log_callback(self, fast_config):
        messages = []
        run_pipeline(SEQ, replace(fast_config, use_sphere=False, use_monte_carlo=False), log_callback=messages.append)
        assert any("Best candidate" in m for m in messages)


class TestIsolation:
    def test_failing_strategy_does_not_stop_others(self, fast_config, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("sampler crashed")

        monkeypatch.setattr(pipeline, "sample_fragments", boom)
        result = run_pipeline(SEQ, fast_config)
        assert any(e.startswith("fragments") for e in result.errors)
        assert "fragments" not in result.summary.per_method
        assert result.candidates

    def test_failing_candidates_recorded(self, fast_config, monkeypatch):
        real = pipeline.run_cascade
        lock = threading.Lock()
        calls = [0]

        def flaky(structure, *args, **kwargs):
            with lock:
                calls[0] += 1
                n = calls[0]
            if n % 2 == 0:
                raise FloatingPointError("optimizer blew up")
            return real(structure, *args, **kwargs)

        monkeypatch.setattr(pipeline, "run_cascade", flaky)
        cfg = replace(fast_config, use_sphere=False, use_monte_carlo=False)
        result = run_pipeline(SEQ, cfg)
        assert result.failures
        assert result.candidates
        assert result.summary.failed == len(result.failures)
        assert all("FloatingPointError" in f.error for f in result.failures)
        assert all(not f.success for f in result.failures)


class TestBiasRanking:
    def test_bias_weight_changes_rank_score(self, fast_config):
        cfg = replace(fast_config, bias_enabled=True, use_sphere=False, use_monte_carlo=False,
                      scoring=ScoringPolicy(bias_weight=0.5, bias_scale=100.0))
        result = run_pipeline(SEQ, cfg)
        for o in result.candidates:
            c = o.candidate
            assert c.bias.enabled
            assert c.rank_score == pytest.approx(c.energy - 50.0 * c.bias.total)

    def test_report_serializes(self, fast_config):
        cfg = replace(fast_config, use_sphere=False, use_monte_carlo=False)
        data = result_to_dict(run_pipeline(SEQ, cfg, reference=build_backbone(SEQ)))
        assert data["sequence"] == SEQ
        assert data["candidates"][0]["rank"] == 1
        assert "comparison" in data["candidates"][0]
        assert data["best"]["length"] == len(SEQ)
