"""
Threshold-stopped OTU assignment for kmerclust.

Sequences are split top-down by 2-means exactly as in divisive clustering,
but a node is kept whole as one operational taxonomic unit (OTU) once the
largest k-mer distance between its members is at or below the threshold.
Each OTU gets one representative sequence.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import numpy as np

from .bisection import BisectionEngine, feature_matrix
from .counting import KmerCounts
from .distances import KmerDistanceProvider
from .errors import ConfigurationError
from .kmeans import DEFAULT_MAX_ATTEMPTS, DEFAULT_MAX_ITER, DEFAULT_NSTART
from .representatives import select_representative, validate_method
from .tree import ClusterTree


@dataclass(frozen=True, eq=False)
class OTUAssignment:
    """Per-sequence OTU id (1-based) and representative flag."""
    cluster_ids: Tuple[int, ...]
    is_representative: Tuple[bool, ...]
    labels: Tuple[str, ...]
    max_distances: Dict[int, float] = field(default_factory=dict)
    tree: Optional[ClusterTree] = None

    def __post_init__(self):
        object.__setattr__(self, 'cluster_ids', tuple(int(c) for c in self.cluster_ids))
        object.__setattr__(self, 'is_representative', tuple(bool(r) for r in self.is_representative))
        object.__setattr__(self, 'labels', tuple(self.labels))
        if not len(self.cluster_ids) == len(self.is_representative) == len(self.labels):
            raise ValueError("OTU ids, representative flags and labels must have equal length")

        representatives: Dict[int, int] = {}
        for idx, (otu_id, is_rep) in enumerate(zip(self.cluster_ids, self.is_representative)):
            representatives.setdefault(otu_id, 0)
            if is_rep:
                representatives[otu_id] += 1
        bad = [otu_id for otu_id, count in representatives.items() if count != 1]
        if bad:
            raise ValueError(f"OTUs {sorted(bad)} do not have exactly one representative")

    @property
    def n_otus(self) -> int:
        return len(set(self.cluster_ids))

    def otus(self) -> Dict[int, List[int]]:
        """OTU id -> member indices, ordered by OTU id."""
        groups: Dict[int, List[int]] = {}
        for idx, otu_id in enumerate(self.cluster_ids):
            groups.setdefault(otu_id, []).append(idx)
        return dict(sorted(groups.items()))

    def members(self, otu_id: int) -> List[int]:
        return [idx for idx, c in enumerate(self.cluster_ids) if c == otu_id]

    def representative(self, otu_id: int) -> int:
        for idx, (c, is_rep) in enumerate(zip(self.cluster_ids, self.is_representative)):
            if c == otu_id and is_rep:
                return idx
        raise KeyError(otu_id)

    def to_records(self) -> List[Tuple[str, int, bool]]:
        """(sequence_id, otu_id, is_representative) per sequence, in input order."""
        return list(zip(self.labels, self.cluster_ids, self.is_representative))

    def to_dict(self) -> Dict:
        return {
            'otus': {
                str(otu_id): {
                    'members': [self.labels[i] for i in members],
                    'representative': self.labels[self.representative(otu_id)],
                    'max_distance': self.max_distances.get(otu_id),
                }
                for otu_id, members in self.otus().items()
            },
            'tree': self.tree.to_dict() if self.tree is not None else None,
        }


class OTUClustering:
    """
    Threshold-stopped recursive bisection into OTUs.

    A node is finalized when its maximum internal k-mer distance is at or
    below threshold; nodes of size 1 are always finalized. Otherwise it is
    split by 2-means and both halves are examined in turn.
    """

    def __init__(self,
                 threshold: float,
                 method: str = "central",
                 nstart: int = DEFAULT_NSTART,
                 rng_seed: int = 0,
                 features: str = "counts",
                 n_seeds: Optional[int] = None,
                 max_iter: int = DEFAULT_MAX_ITER,
                 max_attempts: int = DEFAULT_MAX_ATTEMPTS,
                 num_threads: Optional[int] = None,
                 show_progress: bool = True,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize OTU clustering.

        Args:
            threshold: Maximum within-OTU k-mer distance (positive)
            method: Representative policy ("central", "centroid", "farthest", "longest")
            nstart: k-means restarts per split (default 20)
            rng_seed: Base seed; per-node seeds are derived from it
            features: "counts" or "embedded" (see DivisiveClustering)
            n_seeds: Seed count when features="embedded"
            max_iter: Maximum Lloyd iterations per restart
            max_attempts: Empty-cluster retries per restart
            num_threads: Worker processes (default: auto-detect, 0: single-process)
            show_progress: If True, show progress bars
            logger: Optional logger instance; uses default logging if None
        """
        if isinstance(threshold, bool) or not isinstance(threshold, (int, float, np.floating)) \
                or not np.isfinite(threshold) or threshold <= 0:
            raise ConfigurationError(f"threshold must be a positive real number, got {threshold!r}")
        validate_method(method)

        self.threshold = float(threshold)
        self.method = method
        self.nstart = nstart
        self.rng_seed = rng_seed
        self.features = features
        self.n_seeds = n_seeds
        self.logger = logger or logging.getLogger(__name__)
        self.engine = BisectionEngine(nstart=nstart, rng_seed=rng_seed, max_iter=max_iter,
                                      max_attempts=max_attempts, num_threads=num_threads,
                                      show_progress=show_progress, logger=self.logger)

    def build(self, kmer_counts: KmerCounts, weights: Optional[np.ndarray] = None) -> OTUAssignment:
        """
        Assign every sequence to an OTU and pick one representative per OTU.

        Args:
            kmer_counts: Count vectors for the n sequences
            weights: Optional per-sequence k-means weights

        Returns:
            OTUAssignment; OTU ids are numbered 1.. in left-to-right tree order

        Raises:
            NumericGuardError: If a node contains a pair too short for k
        """
        features = feature_matrix(kmer_counts, self.features, n_seeds=self.n_seeds,
                                  nstart=self.nstart, rng_seed=self.rng_seed)

        self.logger.info(f"Running OTU clustering of {kmer_counts.n} sequences "
                         f"at threshold {self.threshold}")
        tree, leaf_max_distances = self.engine.build(features, kmer_counts.labels, weights=weights,
                                                     kmer_counts=kmer_counts, threshold=self.threshold)
        tree.validate(singleton_leaves=False)

        provider = KmerDistanceProvider(kmer_counts)
        cluster_ids = [0] * kmer_counts.n
        is_representative = [False] * kmer_counts.n
        max_distances = {}
        for otu_id, leaf in enumerate(tree.leaves(), 1):
            for member in leaf.members:
                cluster_ids[member] = otu_id
            rep = select_representative(leaf.members, kmer_counts, self.method, provider)
            is_representative[rep] = True
            max_distances[otu_id] = leaf_max_distances[leaf.id]

        assignment = OTUAssignment(cluster_ids=tuple(cluster_ids),
                                   is_representative=tuple(is_representative),
                                   labels=kmer_counts.labels,
                                   max_distances=max_distances,
                                   tree=tree)

        sizes = sorted((len(m) for m in assignment.otus().values()), reverse=True)
        singletons = sum(1 for s in sizes if s == 1)
        self.logger.info(f"{assignment.n_otus} OTUs (largest {sizes[:10]}), {singletons} singletons")
        return assignment
