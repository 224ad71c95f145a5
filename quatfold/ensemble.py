"""
Post-ranking ensemble tools: a maximally diverse subset and energy-medoid
clustering, both in torsion-RMSD space.
"""
import math
import logging
from dataclasses import dataclass, field
from typing import List

import numpy as np

from .candidate import Candidate, torsion_rmsd_deg

logger = logging.getLogger(__name__)


def _candidate(item):
    return item if isinstance(item, Candidate) else item.candidate


def _score(item):
    c = _candidate(item)
    return c.rank_score if math.isfinite(c.rank_score) else c.energy


def distance_matrix(items):
    """Symmetric torsion RMSD (deg) between every pair."""
    n = len(items)
    D = np.zeros((n, n))
    for i in range(n):
        for j in range(i + 1, n):
            D[i, j] = D[j, i] = torsion_rmsd_deg(_candidate(items[i]).structure, _candidate(items[j]).structure)
    return D


def select_diverse(items, k, distances=None):
    """
    Greedy max-min subset of size k: start from the best-scored item, then
    repeatedly add the item farthest from everything already chosen. Ties go
    to the better score. Items may be Candidates or pipeline outcomes.
    """
    items = list(items)
    if k <= 0 or not items:
        return []
    if k >= len(items):
        return sorted(items, key=_score)
    D = distance_matrix(items) if distances is None else distances
    scores = [_score(x) for x in items]
    chosen = [int(np.argmin(scores))]
    min_dist = D[chosen[0]].copy()
    while len(chosen) < k:
        best, best_key = -1, None
        for i in range(len(items)):
            if i in chosen:
                continue
            key = (min_dist[i], -scores[i])
            if best_key is None or key > best_key:
                best, best_key = i, key
        chosen.append(best)
        min_dist = np.minimum(min_dist, D[best])
    return [items[i] for i in chosen]


@dataclass
class Cluster:
    medoid: object
    members: List = field(default_factory=list)

    @property
    def size(self):
        return len(self.members)


def cluster_candidates(items, num_clusters, max_iters=10, distances=None):
    """
    k-medoid style clustering. Initial centres are spread evenly through the
    input order; each centre is then replaced by the best-scored member of its
    cluster until assignments stop changing or max_iters is reached. Clusters
    come back largest first.
    """
    items = list(items)
    if not items or num_clusters <= 0:
        return []
    k = min(num_clusters, len(items))
    D = distance_matrix(items) if distances is None else distances
    scores = [_score(x) for x in items]
    step = len(items) // k
    centres = [i * step for i in range(k)]
    assign = None

    for it in range(max(1, max_iters)):
        new_assign = [min(range(k), key=lambda c: (D[i, centres[c]], c)) for i in range(len(items))]
        new_centres = []
        for c in range(k):
            members = [i for i, a in enumerate(new_assign) if a == c]
            new_centres.append(min(members, key=lambda i: scores[i]) if members else centres[c])
        if new_assign == assign and new_centres == centres:
            break
        assign, centres = new_assign, new_centres
        logger.debug(f"Clustering iteration {it}: centres {centres}")

    clusters = [Cluster(items[centres[c]], [items[i] for i, a in enumerate(assign) if a == c])
                for c in range(k)]
    clusters = [c for c in clusters if c.members]
    clusters.sort(key=lambda c: (-c.size, _score(c.medoid)))
    return clusters
