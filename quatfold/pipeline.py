import math
import time
import logging
import threading
import concurrent.futures
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

import numpy as np

from .basins import sample_basins
from .bias import HarmonicBias
from .candidate import Candidate, diversity
from .config import PipelineConfig
from .constraints import predict_contacts
from .ensemble import Cluster, cluster_candidates, distance_matrix, select_diverse
from .errors import GeometryError, InputError
from .fragments import sample_fragments
from .geometry import add_backbone_hydrogens, build_backbone
from .monte_carlo import sample_monte_carlo
from .optimize import run_cascade
from .residues import validate_sequence
from .secondary import predict_secondary_structure
from .sphere_sampler import sample_sphere
from .validation import ComparisonResult, compare_structures

logger = logging.getLogger(__name__)


@dataclass
class CandidateOutcome:
    index: int
    method: str
    success: bool
    candidate: Optional[Candidate] = None
    comparison: Optional[ComparisonResult] = None
    error: Optional[str] = None

    @property
    def energy(self):
        return self.candidate.energy if self.candidate is not None else math.nan


@dataclass
class PipelineSummary:
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    degenerate: int = 0
    stagnated: int = 0
    per_method: Dict[str, int] = field(default_factory=dict)
    energy_mean: float = math.nan
    energy_min: float = math.nan
    best_rmsd: float = math.nan
    best_tm_score: float = math.nan
    best_gdt_ts: float = math.nan
    diversity: float = 0.0
    elapsed: float = 0.0


@dataclass
class PipelineResult:
    sequence: str
    candidates: List[CandidateOutcome] = field(default_factory=list)
    failures: List[CandidateOutcome] = field(default_factory=list)
    summary: PipelineSummary = field(default_factory=PipelineSummary)
    errors: List[str] = field(default_factory=list)
    secondary_structure: str = ""
    diverse: List[CandidateOutcome] = field(default_factory=list)
    clusters: List[Cluster] = field(default_factory=list)

    @property
    def best(self):
        return self.candidates[0] if self.candidates else None


class _Aggregator:
    """Collects worker outcomes; the lock is the only shared mutable state."""

    def __init__(self):
        self._lock = threading.Lock()
        self.succeeded: List[CandidateOutcome] = []
        self.failed: List[CandidateOutcome] = []

    def add(self, outcome):
        with self._lock:
            if outcome.success:
                self.succeeded.append(outcome)
            else:
                self.failed.append(outcome)


def _strategies(cfg, seq, seed, model, bias):
    n = cfg.samples_per_method
    return {
        "sphere": lambda: sample_sphere(seq, seed.clone(), replace(cfg.sphere, num_samples=n, seed=cfg.seed),
                                        model, bias),
        "monte_carlo": lambda: sample_monte_carlo(seq, seed.clone(), replace(cfg.monte_carlo, seed=cfg.seed),
                                                  model, bias, num_runs=n),
        "fragments": lambda: sample_fragments(seq, seed.clone(), replace(cfg.fragments, num_structures=n,
                                                                         seed=cfg.seed), model, bias),
        "basins": lambda: sample_basins(seq, seed.clone(), replace(cfg.basins, num_structures=n, seed=cfg.seed),
                                        model, bias),
    }


def _refine(index, cand, cfg, model, bias, reference, constraints):
    work = cand.structure.clone()
    diagnostics = run_cascade(work, cfg.optimizer_methods, model=model, relax=cfg.relax, lbfgs=cfg.lbfgs,
                              annealing=cfg.annealing, constraint_config=cfg.constraints,
                              constraints=constraints, clash_removal=cfg.remove_clashes)
    components = model.evaluate(work)
    refined = Candidate(structure=work, method=cand.method, energy=components.total,
                        components=components, bias=bias.score(work), diagnostics=diagnostics,
                        stats=dict(cand.stats))
    refined.rank_score = cfg.scoring.score_candidate(refined)
    comparison = compare_structures(work, reference, superpose=cfg.superpose) if reference is not None else None
    return CandidateOutcome(index, cand.method, True, refined, comparison)


def _summarize(result, agg, started):
    s = result.summary
    s.succeeded = len(agg.succeeded)
    s.failed = len(agg.failed)
    s.total = s.succeeded + s.failed
    for o in agg.succeeded + agg.failed:
        s.per_method[o.method] = s.per_method.get(o.method, 0) + 1
    valid = [o for o in agg.succeeded if not o.candidate.degenerate]
    s.degenerate = s.succeeded - len(valid)
    s.stagnated = sum(1 for o in agg.succeeded
                      if o.candidate.diagnostics and all(d.stagnated for d in o.candidate.diagnostics))
    if valid:
        energies = np.array([o.energy for o in valid])
        s.energy_mean = float(energies.mean())
        s.energy_min = float(energies.min())
    compared = [o.comparison for o in agg.succeeded if o.comparison is not None
                and math.isfinite(o.comparison.rmsd)]
    if compared:
        s.best_rmsd = min(c.rmsd for c in compared)
        s.best_tm_score = max(c.tm_score for c in compared)
        s.best_gdt_ts = max(c.gdt_ts for c in compared)
    s.diversity = diversity([o.candidate for o in agg.succeeded])
    s.elapsed = time.time() - started


def _select_ensemble(result, cfg, log):
    """Diverse subset and clusters over the non-degenerate ranked candidates."""
    valid = [o for o in result.candidates if not o.candidate.degenerate]
    if not valid or (cfg.diverse_count <= 0 and cfg.num_clusters <= 0):
        return
    D = distance_matrix(valid)
    if cfg.diverse_count > 0:
        result.diverse = select_diverse(valid, cfg.diverse_count, distances=D)
    if cfg.num_clusters > 0:
        result.clusters = cluster_candidates(valid, cfg.num_clusters, distances=D)
    log(f"Diverse subset: {[o.index for o in result.diverse]}; "
        f"cluster sizes: {[c.size for c in result.clusters]}")


def run_pipeline(sequence, config=None, reference=None, constraints=None, log_callback=None):
    """
    Sample, refine, score and rank candidate backbones for one sequence.

    Args:
        sequence: one-letter amino-acid sequence
        config: PipelineConfig (defaults when None)
        reference: optional Structure to compare every candidate against
        constraints: DistanceConstraint list for constraint-guided refinement;
            predicted from the sequence when that method is enabled and none are given
        log_callback: progress sink (default: module logger at INFO)

    Always returns a PipelineResult; failures are recorded, not raised.
    """
    started = time.time()
    cfg = config or PipelineConfig()
    log = log_callback or logger.info
    result = PipelineResult(sequence=str(sequence or ""))

    try:
        seq = validate_sequence(sequence)
        result.sequence = seq
        seed = build_backbone(seq, name="seed")
        if cfg.add_hydrogens:
            add_backbone_hydrogens(seed)
    except (InputError, GeometryError) as e:
        result.errors.append(f"{type(e).__name__}: {e}")
        log(f"Cannot start prediction: {e}")
        result.summary.elapsed = time.time() - started
        return result

    model = cfg.energy_model()
    bias = HarmonicBias(cfg.bias_weights, enabled=cfg.bias_enabled)
    predicted = predict_secondary_structure(seq)
    result.secondary_structure = cfg.basins.secondary_structure or predicted.labels
    if cfg.basins.mode == "constrained" and not cfg.basins.secondary_structure:
        cfg = replace(cfg, basins=replace(cfg.basins, secondary_structure=predicted.labels))
        log(f"Predicted secondary structure: {predicted.labels}")
    if "constraints" in cfg.optimizer_methods and constraints is None:
        constraints = predict_contacts(seq, cfg.constraints.contact_distance, cfg.constraints.min_separation,
                                       k=cfg.constraints.force_constant)
        log(f"Predicted {len(constraints)} contact restraints from sequence")

    methods = cfg.enabled_methods()
    log(f"Sequence length {len(seq)}; sampling with {', '.join(methods) or 'no methods'}")
    strategies = _strategies(cfg, seq, seed, model, bias)
    agg = _Aggregator()

    with concurrent.futures.ThreadPoolExecutor(max_workers=max(1, cfg.max_workers)) as executor:
        sample_futures = {executor.submit(strategies[m]): m for m in methods}
        sampled = {}
        for future in concurrent.futures.as_completed(sample_futures):
            method = sample_futures[future]
            try:
                sampled[method] = future.result()
            except Exception as e:
                logger.exception(f"Sampling strategy {method} failed")
                result.errors.append(f"{method}: {type(e).__name__}: {e}")
                continue
            log(f"  {method}: {len(sampled[method])} candidates")
        # candidate indices follow method order, not completion order
        pending = [c for m in methods for c in sampled.get(m, [])]

        refine_futures = {}
        for idx, cand in enumerate(pending):
            f = executor.submit(_refine, idx, cand, cfg, model, bias, reference, constraints)
            refine_futures[f] = (idx, cand.method)
        for future in concurrent.futures.as_completed(refine_futures):
            idx, method = refine_futures[future]
            try:
                outcome = future.result()
            except Exception as e:
                logger.warning(f"Candidate {idx} ({method}) failed: {type(e).__name__}: {e}")
                outcome = CandidateOutcome(idx, method, False, error=f"{type(e).__name__}: {e}")
            agg.add(outcome)

    result.candidates = sorted(agg.succeeded, key=lambda o: (o.candidate.rank_score, o.index))
    result.failures = sorted(agg.failed, key=lambda o: o.index)
    _summarize(result, agg, started)
    _select_ensemble(result, cfg, log)

    best = result.best
    if best is not None:
        msg = f"Best candidate: {best.method} #{best.index}, E={best.energy:.2f}"
        if best.comparison is not None:
            msg += f", RMSD={best.comparison.rmsd:.2f}, TM={best.comparison.tm_score:.3f} ({best.comparison.label})"
        log(msg)
    log(f"{result.summary.succeeded}/{result.summary.total} candidates refined in {result.summary.elapsed:.1f}s")
    return result
