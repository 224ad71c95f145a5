import math
from dataclasses import dataclass

from .energy import is_degenerate


@dataclass
class ScoringPolicy:
    """
    Rank score for candidates, lower is better:
        energy_weight * energy - bias_weight * bias_scale * bias

    bias_scale converts the unitless [0, 1] bias into energy units. With the
    default bias_weight of 0 the ranking is purely physical.
    """
    energy_weight: float = 1.0
    bias_weight: float = 0.0
    bias_scale: float = 100.0

    def score(self, energy, bias=0.0, bias_enabled=True):
        if is_degenerate(energy):
            return math.inf
        value = self.energy_weight * energy
        if bias_enabled and self.bias_weight:
            value -= self.bias_weight * self.bias_scale * bias
        return value

    def score_candidate(self, candidate):
        return self.score(candidate.energy, candidate.bias.total, candidate.bias.enabled)
