"""
Recursive 2-means bisection shared by divisive clustering and OTU assignment.

The tree is grown one frontier level at a time. Every node on a level is
independent of its siblings, so a level can be evaluated in-process or on a
process pool; each node's k-means seed is derived from its member set, so both
paths produce identical trees.
"""

import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
import numpy as np
from tqdm import tqdm

from .counting import KmerCounts
from .distances import KmerDistanceProvider
from .embedding import mbed
from .errors import ConfigurationError, InputError
from .kmeans import DEFAULT_MAX_ATTEMPTS, DEFAULT_MAX_ITER, DEFAULT_NSTART, KMeansPartitioner
from .tree import ClusterTree, derive_node_seed
from .utils import resolve_num_workers


FEATURE_KINDS = ("counts", "embedded")


def feature_matrix(kmer_counts: KmerCounts,
                   kind: str = "counts",
                   n_seeds: Optional[int] = None,
                   nstart: int = DEFAULT_NSTART,
                   rng_seed: int = 0) -> np.ndarray:
    """
    Feature vectors that k-means splits on.

    Args:
        kmer_counts: Count vectors
        kind: "counts" for the raw count vectors, "embedded" for k-mer
            distances to automatically chosen seeds
        n_seeds: Seed count for the embedding
        nstart: k-means restarts for seed selection
        rng_seed: Seed for seed selection

    Returns:
        n x d feature matrix
    """
    if kind == "counts":
        return kmer_counts.counts
    if kind == "embedded":
        return mbed(kmer_counts, n_seeds=n_seeds, nstart=nstart, rng_seed=rng_seed).values
    raise ConfigurationError(f"features must be one of {FEATURE_KINDS}, got {kind!r}")


def stable_split(members: Sequence[int]) -> Tuple[List[int], List[int]]:
    """Split members in index order: first half (rounded down) and the rest."""
    ordered = sorted(members)
    half = len(ordered) // 2
    return ordered[:half], ordered[half:]


@dataclass(frozen=True)
class NodeOutcome:
    """Result of evaluating one node: either finalized, or split into two groups."""
    max_distance: Optional[float]
    left: Optional[Tuple[int, ...]] = None
    right: Optional[Tuple[int, ...]] = None
    degenerate: bool = False

    @property
    def is_split(self) -> bool:
        return self.left is not None


@dataclass(frozen=True, eq=False)
class BisectionContext:
    """Everything needed to evaluate a node, shipped once to each worker."""
    features: np.ndarray
    weights: Optional[np.ndarray]
    kmer_counts: Optional[KmerCounts]
    threshold: Optional[float]
    nstart: int
    rng_seed: int
    max_iter: int
    max_attempts: int

    def evaluate(self, members: Sequence[int]) -> NodeOutcome:
        members = sorted(members)
        max_distance = None
        if self.threshold is not None:
            provider = KmerDistanceProvider(self.kmer_counts)
            max_distance = provider.max_distance(members, stop_above=self.threshold)
            if max_distance <= self.threshold:
                return NodeOutcome(max_distance=max_distance)
        if len(members) == 1:
            return NodeOutcome(max_distance=0.0)

        left, right, degenerate = self.split(members)
        return NodeOutcome(max_distance=max_distance, left=tuple(left), right=tuple(right),
                           degenerate=degenerate)

    def split(self, members: List[int]) -> Tuple[List[int], List[int], bool]:
        """2-means split of a node; falls back to stable_split when all features coincide."""
        sub_features = self.features[members]
        if len(np.unique(sub_features, axis=0)) < 2:
            left, right = stable_split(members)
            return left, right, True

        partitioner = KMeansPartitioner(2, nstart=self.nstart, max_iter=self.max_iter,
                                        max_attempts=self.max_attempts)
        sub_weights = self.weights[members] if self.weights is not None else None
        result = partitioner.partition(sub_features, weights=sub_weights, rng_seed=self.rng_seed,
                                       call_key=derive_node_seed(self.rng_seed, members))
        groups = [[members[i] for i in group] for group in result.groups()]
        left, right = sorted(groups, key=min)
        return left, right, False


# Worker state for multiprocess frontier evaluation
_bisection_worker_context = None


def _init_bisection_worker(context: BisectionContext) -> None:
    """Initialize the shared bisection context once per worker process."""
    global _bisection_worker_context
    _bisection_worker_context = context


def _evaluate_node_worker(members: Tuple[int, ...]) -> NodeOutcome:
    return _bisection_worker_context.evaluate(members)


class BisectionEngine:
    """
    Top-down tree construction by repeated 2-means splitting.

    Without a threshold every node is split down to singletons. With a
    threshold (and count vectors to measure distances), a node whose maximum
    internal k-mer distance is at or below the threshold is kept as a leaf.
    """

    def __init__(self,
                 nstart: int = DEFAULT_NSTART,
                 rng_seed: int = 0,
                 max_iter: int = DEFAULT_MAX_ITER,
                 max_attempts: int = DEFAULT_MAX_ATTEMPTS,
                 num_threads: Optional[int] = None,
                 show_progress: bool = True,
                 logger: Optional[logging.Logger] = None):
        # Validates nstart / max_iter / max_attempts up front
        KMeansPartitioner(2, nstart=nstart, max_iter=max_iter, max_attempts=max_attempts)
        if isinstance(rng_seed, bool) or not isinstance(rng_seed, (int, np.integer)) or rng_seed < 0:
            raise ConfigurationError(f"rng_seed must be a non-negative integer, got {rng_seed!r}")
        self.nstart = nstart
        self.rng_seed = int(rng_seed)
        self.max_iter = max_iter
        self.max_attempts = max_attempts
        self.num_threads = num_threads
        self.show_progress = show_progress
        self.logger = logger or logging.getLogger(__name__)

    def build(self,
              features: np.ndarray,
              labels: Sequence[str],
              weights: Optional[np.ndarray] = None,
              kmer_counts: Optional[KmerCounts] = None,
              threshold: Optional[float] = None) -> Tuple[ClusterTree, Dict[int, float]]:
        """
        Grow a cluster tree over all items.

        Args:
            features: n x d feature matrix used by k-means
            labels: Sequence identifiers
            weights: Optional per-item k-means weights
            kmer_counts: Count vectors (required with a threshold)
            threshold: Stop splitting nodes whose maximum distance is <= threshold

        Returns:
            Tuple of (tree, leaf_max_distances) where leaf_max_distances maps
            each leaf node id to its maximum internal distance (0.0 for
            singletons; only measured when a threshold is given)
        """
        features = np.asarray(features, dtype=np.float64)
        n = len(features)
        if n == 0:
            raise InputError("Cannot build a tree over an empty sequence set")
        if len(labels) != n:
            raise InputError(f"Got {len(labels)} labels for {n} items")
        if threshold is not None and kmer_counts is None:
            raise ConfigurationError("A threshold requires count vectors to measure distances")
        if weights is not None:
            weights = np.asarray(weights, dtype=np.float64)
            if weights.shape != (n,) or np.any(weights <= 0):
                raise ConfigurationError("Weights must be positive, one per item")

        context = BisectionContext(features=features, weights=weights, kmer_counts=kmer_counts,
                                   threshold=threshold, nstart=self.nstart, rng_seed=self.rng_seed,
                                   max_iter=self.max_iter, max_attempts=self.max_attempts)

        tree = ClusterTree(labels)
        frontier = [tree.add_node(range(n))]
        leaf_max_distances: Dict[int, float] = {}
        degenerate_splits = 0

        pbar = None
        if self.show_progress:
            pbar = tqdm(total=n, desc="Building tree", unit=" seqs")

        num_workers = resolve_num_workers(self.num_threads, n)
        executor = None
        if num_workers > 1:
            executor = ProcessPoolExecutor(max_workers=num_workers,
                                           initializer=_init_bisection_worker,
                                           initargs=(context,))
        try:
            level = 0
            while frontier:
                member_sets = [tree.node(node_id).members for node_id in frontier]
                if executor is not None:
                    outcomes = list(executor.map(_evaluate_node_worker, member_sets))
                else:
                    outcomes = [context.evaluate(members) for members in member_sets]

                next_frontier = []
                for node_id, outcome in zip(frontier, outcomes):
                    if not outcome.is_split:
                        leaf_max_distances[node_id] = outcome.max_distance
                        if pbar:
                            pbar.update(tree.node(node_id).size)
                        continue
                    if outcome.degenerate:
                        degenerate_splits += 1
                        self.logger.debug(f"Node {node_id} has identical features; "
                                          f"splitting {tree.node(node_id).size} members in index order")
                    next_frontier.extend(tree.split(node_id, outcome.left, outcome.right))

                self.logger.debug(f"Level {level}: {len(frontier)} nodes evaluated, "
                                  f"{len(next_frontier) // 2} split")
                frontier = next_frontier
                level += 1
        finally:
            if executor is not None:
                executor.shutdown()
            if pbar:
                pbar.close()

        if degenerate_splits:
            self.logger.info(f"{degenerate_splits} nodes had indistinguishable members and were split in index order")

        return tree.freeze(), leaf_max_distances
