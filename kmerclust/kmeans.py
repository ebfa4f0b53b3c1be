"""
Weighted k-means partitioning for kmerclust.

Lloyd iteration over feature vectors (count vectors or embedded distances)
with multiple restarts. All randomness comes from generators built from an
explicit seed, a caller-supplied call key, the restart number and the retry
attempt, so results are reproducible bit-for-bit regardless of execution
order.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Union
import numpy as np

from .errors import ConfigurationError, ConvergenceError, InputError

DEFAULT_NSTART = 20
DEFAULT_MAX_ITER = 100
DEFAULT_MAX_ATTEMPTS = 10

Metric = Union[str, Callable[[np.ndarray, np.ndarray], np.ndarray]]


@dataclass(frozen=True, eq=False)
class KMeansResult:
    """Best partition found across restarts."""
    assignment: np.ndarray
    centroids: np.ndarray
    objective: float
    n_iter: int
    restart: int

    def groups(self):
        """Member indices of each cluster, in cluster order."""
        return [np.flatnonzero(self.assignment == c) for c in range(len(self.centroids))]


def _check_non_negative_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)) or value < 0:
        raise ConfigurationError(f"{name} must be a non-negative integer, got {value!r}")
    return int(value)


class KMeansPartitioner:
    """
    Weighted Lloyd k-means with multiple restarts and bounded empty-cluster retries.

    Each restart draws k distinct items as initial centroids. A restart that
    produces an empty cluster is discarded and retried with a freshly derived
    seed, up to max_attempts times; after that the call fails with
    ConvergenceError.
    """

    def __init__(self,
                 k: int,
                 nstart: int = DEFAULT_NSTART,
                 max_iter: int = DEFAULT_MAX_ITER,
                 max_attempts: int = DEFAULT_MAX_ATTEMPTS,
                 metric: Metric = "sqeuclidean",
                 logger: Optional[logging.Logger] = None):
        """
        Initialize the partitioner.

        Args:
            k: Number of clusters
            nstart: Number of independent restarts (best objective wins)
            max_iter: Maximum Lloyd iterations per restart
            max_attempts: Retries per restart when a cluster goes empty
            metric: "sqeuclidean" or a callable (features, centroids) -> n x k distances
            logger: Optional logger instance; uses module logger if None
        """
        for name, value in (("k", k), ("nstart", nstart), ("max_iter", max_iter),
                            ("max_attempts", max_attempts)):
            if isinstance(value, bool) or not isinstance(value, (int, np.integer)) or value < 1:
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
        if metric != "sqeuclidean" and not callable(metric):
            raise ConfigurationError(f"metric must be 'sqeuclidean' or a callable, got {metric!r}")

        self.k = int(k)
        self.nstart = int(nstart)
        self.max_iter = int(max_iter)
        self.max_attempts = int(max_attempts)
        self.metric = metric
        self.logger = logger or logging.getLogger(__name__)

    def partition(self,
                  features: np.ndarray,
                  weights: Optional[np.ndarray] = None,
                  rng_seed: int = 0,
                  call_key: int = 0) -> KMeansResult:
        """
        Partition items into k clusters.

        Args:
            features: n x d feature matrix (one row per item)
            weights: Optional positive per-item weights (default: all 1)
            rng_seed: Base seed
            call_key: Per-call disambiguator (e.g. a tree node seed)

        Returns:
            KMeansResult with the lowest within-cluster dispersion

        Raises:
            ConfigurationError: If there are fewer distinct items than k, or
                weights are malformed
            ConvergenceError: If a restart keeps producing empty clusters
        """
        X = np.asarray(features, dtype=np.float64)
        if X.ndim != 2:
            raise InputError(f"Features must be a 2-D matrix, got {X.ndim} dimensions")
        n = X.shape[0]
        if n == 0:
            raise InputError("Cannot partition an empty item set")
        rng_seed = _check_non_negative_int(rng_seed, "rng_seed")
        call_key = _check_non_negative_int(call_key, "call_key")

        if weights is None:
            w = np.ones(n, dtype=np.float64)
        else:
            w = np.asarray(weights, dtype=np.float64)
            if w.shape != (n,):
                raise ConfigurationError(f"Expected {n} weights, got shape {w.shape}")
            if not np.all(np.isfinite(w)) or np.any(w <= 0):
                raise ConfigurationError("Weights must be positive and finite")

        _, distinct = np.unique(X, axis=0, return_index=True)
        distinct = np.sort(distinct)
        if len(distinct) < self.k:
            raise ConfigurationError(
                f"Cannot form {self.k} clusters from {len(distinct)} distinct items")

        best = None
        for restart in range(self.nstart):
            result = self._run_restart(X, w, distinct, rng_seed, call_key, restart)
            if best is None or result.objective < best.objective:
                best = result
        return best

    def _run_restart(self, X: np.ndarray, w: np.ndarray, distinct: np.ndarray,
                     rng_seed: int, call_key: int, restart: int) -> KMeansResult:
        for attempt in range(self.max_attempts):
            rng = np.random.default_rng([rng_seed, call_key, restart, attempt])
            initial = np.sort(rng.choice(distinct, size=self.k, replace=False))
            outcome = self._lloyd(X, w, X[initial].copy())
            if outcome is not None:
                assignment, centroids, objective, n_iter = outcome
                return KMeansResult(assignment=assignment, centroids=centroids,
                                    objective=objective, n_iter=n_iter, restart=restart)
            self.logger.debug(f"k-means restart {restart} attempt {attempt} produced an empty cluster")

        raise ConvergenceError(
            f"k-means (k={self.k}) produced an empty cluster in all {self.max_attempts} "
            f"attempts of restart {restart}")

    def _lloyd(self, X: np.ndarray, w: np.ndarray, centroids: np.ndarray):
        """Run Lloyd iterations; returns None if a cluster becomes empty."""
        assignment = None
        n_iter = 0
        while n_iter < self.max_iter:
            distances = self._squared_distances(X, centroids)
            new_assignment = np.argmin(distances, axis=1)
            if np.bincount(new_assignment, minlength=self.k).min() == 0:
                return None
            if assignment is not None and np.array_equal(new_assignment, assignment):
                break
            assignment = new_assignment
            centroids = self._weighted_means(X, w, assignment)
            n_iter += 1

        distances = self._squared_distances(X, centroids)
        objective = float(np.sum(w * distances[np.arange(len(X)), assignment]))
        return assignment, centroids, objective, n_iter

    def _weighted_means(self, X: np.ndarray, w: np.ndarray, assignment: np.ndarray) -> np.ndarray:
        centroids = np.empty((self.k, X.shape[1]), dtype=np.float64)
        for cluster in range(self.k):
            mask = assignment == cluster
            centroids[cluster] = np.average(X[mask], axis=0, weights=w[mask])
        return centroids

    def _squared_distances(self, X: np.ndarray, centroids: np.ndarray) -> np.ndarray:
        if self.metric == "sqeuclidean":
            squared = (
                np.einsum('ij,ij->i', X, X)[:, None]
                - 2.0 * X @ centroids.T
                + np.einsum('ij,ij->i', centroids, centroids)[None, :]
            )
            return np.maximum(squared, 0.0)
        distances = np.asarray(self.metric(X, centroids), dtype=np.float64)
        if distances.shape != (len(X), len(centroids)):
            raise ConfigurationError(
                f"Metric returned shape {distances.shape}, expected {(len(X), len(centroids))}")
        return distances ** 2


def kmeans_partition(features: np.ndarray,
                     k: int,
                     nstart: int = DEFAULT_NSTART,
                     rng_seed: int = 0,
                     weights: Optional[np.ndarray] = None,
                     call_key: int = 0,
                     max_iter: int = DEFAULT_MAX_ITER,
                     max_attempts: int = DEFAULT_MAX_ATTEMPTS,
                     metric: Metric = "sqeuclidean") -> KMeansResult:
    """Functional form of KMeansPartitioner(...).partition(...)."""
    partitioner = KMeansPartitioner(k, nstart=nstart, max_iter=max_iter,
                                    max_attempts=max_attempts, metric=metric)
    return partitioner.partition(features, weights=weights, rng_seed=rng_seed, call_key=call_key)
