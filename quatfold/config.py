import os
import logging
from dataclasses import dataclass, field, fields
from typing import Dict, Optional, Sequence, Tuple

from .bias import BiasWeights
from .energy import EnergyModel
from .env_loader import load_env
from .scoring import ScoringPolicy

logger = logging.getLogger(__name__)


@dataclass
class SphereSamplerConfig:
    num_samples: int = 50
    slerp_steps: int = 10
    perturb_radius: float = 0.5
    per_segment: bool = True
    segment_length: int = 4
    residue_offset: float = 0.05
    use_fibonacci: bool = True
    seed: int = 42


@dataclass
class MonteCarloConfig:
    steps: int = 1000
    initial_temp: float = 500.0
    final_temp: float = 10.0
    step_size_deg: float = 30.0
    bias_weight: float = 0.3
    bias_scale: float = 100.0
    seed: int = 42
    # acceptance-driven temperature with early stop
    adaptive: bool = False
    target_acceptance: float = 0.5
    adapt_interval: int = 100
    patience: int = 200


@dataclass
class FragmentConfig:
    num_structures: int = 10
    top_k: int = 3
    seed: int = 42


@dataclass
class BasinConfig:
    num_structures: int = 10
    mode: str = "systematic"  # systematic | mixed | constrained
    proportions: Dict[str, float] = field(default_factory=lambda: {
        "alpha_helix": 0.35,
        "beta_sheet": 0.25,
        "extended_ppii": 0.15,
        "bridge": 0.10,
        "turn_I": 0.05,
        "turn_II": 0.03,
        "left_handed_helix": 0.05,
    })
    secondary_structure: Optional[str] = None
    noise_scale: float = 1.0
    seed: int = 42


@dataclass
class RelaxConfig:
    max_steps: int = 50
    step_size: float = 0.01
    tolerance: float = 0.1


@dataclass
class LbfgsConfig:
    max_iterations: int = 200
    gradient_tolerance: float = 0.01
    energy_tolerance: float = 0.1
    memory: int = 10
    fd_step: float = 1e-3
    segment_length: int = 1


@dataclass
class AnnealingConfig:
    initial_temp: float = 1000.0
    final_temp: float = 1.0
    steps: int = 5000
    initial_step_deg: float = 20.0
    final_step_deg: float = 1.0
    schedule: str = "exponential"  # exponential | linear | geometric
    seed: int = 42


@dataclass
class ConstraintConfig:
    force_constant: float = 1.0
    max_iterations: int = 100
    contact_distance: float = 8.0
    min_separation: int = 6


@dataclass
class PipelineConfig:
    use_sphere: bool = True
    use_monte_carlo: bool = True
    use_fragments: bool = True
    use_basins: bool = True
    samples_per_method: int = 5
    optimizer_methods: Tuple[str, ...] = ("gentle",)
    max_workers: int = 4
    seed: int = 42
    vdw_cutoff: float = 10.0
    elec_cutoff: float = 12.0
    add_hydrogens: bool = True
    remove_clashes: bool = True
    superpose: bool = False
    diverse_count: int = 5
    num_clusters: int = 3
    bias_enabled: bool = False
    bias_weights: BiasWeights = field(default_factory=BiasWeights)
    scoring: ScoringPolicy = field(default_factory=ScoringPolicy)
    sphere: SphereSamplerConfig = field(default_factory=SphereSamplerConfig)
    monte_carlo: MonteCarloConfig = field(default_factory=MonteCarloConfig)
    fragments: FragmentConfig = field(default_factory=FragmentConfig)
    basins: BasinConfig = field(default_factory=BasinConfig)
    relax: RelaxConfig = field(default_factory=RelaxConfig)
    lbfgs: LbfgsConfig = field(default_factory=LbfgsConfig)
    annealing: AnnealingConfig = field(default_factory=AnnealingConfig)
    constraints: ConstraintConfig = field(default_factory=ConstraintConfig)

    def energy_model(self):
        return EnergyModel(vdw_cutoff=self.vdw_cutoff, elec_cutoff=self.elec_cutoff)

    def enabled_methods(self):
        flags = (("sphere", self.use_sphere), ("monte_carlo", self.use_monte_carlo),
                 ("fragments", self.use_fragments), ("basins", self.use_basins))
        return [name for name, on in flags if on]

    @classmethod
    def from_env(cls, env_path=None, **overrides):
        """Defaults, then QUATFOLD_* variables (after .env files are loaded), then keyword overrides."""
        load_env(env_path)
        cfg = cls()
        for f in fields(cls):
            key = f"QUATFOLD_{f.name.upper()}"
            raw = os.environ.get(key)
            if raw is None:
                continue
            try:
                setattr(cfg, f.name, _coerce(raw, getattr(cfg, f.name)))
            except ValueError as e:
                logger.warning(f"Ignoring {key}={raw!r}: {e}")
        if "QUATFOLD_BIAS_WEIGHT" in os.environ:
            try:
                cfg.scoring.bias_weight = float(os.environ["QUATFOLD_BIAS_WEIGHT"])
            except ValueError:
                logger.warning(f"Ignoring QUATFOLD_BIAS_WEIGHT={os.environ['QUATFOLD_BIAS_WEIGHT']!r}")
        for k, v in overrides.items():
            setattr(cfg, k, v)
        return cfg


def _coerce(raw, current):
    if isinstance(current, bool):
        v = raw.strip().lower()
        if v in ("1", "true", "yes", "on"):
            return True
        if v in ("0", "false", "no", "off"):
            return False
        raise ValueError("expected a boolean")
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    if isinstance(current, tuple):
        return tuple(s.strip() for s in raw.split(",") if s.strip())
    if isinstance(current, str) or current is None:
        return raw
    raise ValueError("not configurable from the environment")


def parse_methods(text: Optional[str], default: Sequence[str] = ()):
    if not text:
        return tuple(default)
    return tuple(s.strip().lower() for s in text.split(",") if s.strip())
