"""
Divisive hierarchical clustering for kmerclust.

Starting from the full sequence set, every node is split in two by 2-means
until each leaf holds a single sequence. No distance threshold is consulted.
"""

import logging
from typing import Optional
import numpy as np

from .bisection import BisectionEngine, feature_matrix
from .counting import KmerCounts
from .kmeans import DEFAULT_MAX_ATTEMPTS, DEFAULT_MAX_ITER, DEFAULT_NSTART
from .tree import ClusterTree


class DivisiveClustering:
    """
    Top-down binary clustering of k-mer count vectors.

    For library usage:
    - Set show_progress=False to disable progress bars in headless environments
    - Pass a custom logger to integrate with your application's logging system
    - num_threads=0 keeps all work in the calling process
    """

    def __init__(self,
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
        Initialize divisive clustering.

        Args:
            nstart: k-means restarts per split (default 20)
            rng_seed: Base seed; per-node seeds are derived from it
            features: "counts" to split on count vectors, "embedded" to split
                on distances to automatically selected seeds
            n_seeds: Seed count when features="embedded"
            max_iter: Maximum Lloyd iterations per restart
            max_attempts: Empty-cluster retries per restart
            num_threads: Worker processes (default: auto-detect, 0: single-process)
            show_progress: If True, show progress bars
            logger: Optional logger instance; uses default logging if None
        """
        self.nstart = nstart
        self.rng_seed = rng_seed
        self.features = features
        self.n_seeds = n_seeds
        self.show_progress = show_progress
        self.logger = logger or logging.getLogger(__name__)
        self.engine = BisectionEngine(nstart=nstart, rng_seed=rng_seed, max_iter=max_iter,
                                      max_attempts=max_attempts, num_threads=num_threads,
                                      show_progress=show_progress, logger=self.logger)

    def build(self, kmer_counts: KmerCounts, weights: Optional[np.ndarray] = None) -> ClusterTree:
        """
        Build a binary cluster tree with one sequence per leaf.

        Args:
            kmer_counts: Count vectors for the n sequences
            weights: Optional per-sequence k-means weights (e.g. abundances)

        Returns:
            ClusterTree with exactly n singleton leaves
        """
        features = feature_matrix(kmer_counts, self.features, n_seeds=self.n_seeds,
                                  nstart=self.nstart, rng_seed=self.rng_seed)

        self.logger.info(f"Running divisive clustering of {kmer_counts.n} sequences "
                         f"on {self.features} features")
        tree, _ = self.engine.build(features, kmer_counts.labels, weights=weights)
        tree.validate(singleton_leaves=True)

        max_depth = max(node.depth for node in tree.nodes)
        self.logger.info(f"Divisive clustering complete: {tree.n_leaves} leaves, depth {max_depth}")
        return tree
