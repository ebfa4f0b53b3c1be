"""
K-mer distance calculation for kmerclust.

For two count vectors a and b the fractional common k-mer count is

    F = sum(min(a, b)) / (min(L_a, L_b) - k + 1)

and the distance is d = (ln(0.1 + F) - ln(1.1)) / ln(0.1). Identical spectra
give 0; disjoint spectra give 1 - ln(1.1)/ln(0.1), about 1.0414.

Distances are evaluated either between all pairs (full mode) or between every
sequence and a small seed subset (embedded mode).
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set, Tuple
from concurrent.futures import ProcessPoolExecutor
import numpy as np
from tqdm import tqdm

from .counting import KmerCounts
from .errors import ConfigurationError, NumericGuardError
from .utils import resolve_num_workers

logger = logging.getLogger(__name__)

_LOG_OFFSET = 0.1
_LOG_BASE = math.log(0.1)
_LOG_MAX = math.log(1.1)

MAX_KMER_DISTANCE = 1.0 - _LOG_MAX / _LOG_BASE

MISSING_POLICIES = ("raise", "nan")
DISTANCE_METHODS = ("edgar", "euclidean")


def _distance_from_fraction(fraction):
    distance = (np.log(_LOG_OFFSET + fraction) - _LOG_MAX) / _LOG_BASE
    return np.maximum(distance, 0.0)


def kmer_distance(count_a: np.ndarray, count_b: np.ndarray,
                  length_a: int, length_b: int, k: int) -> float:
    """
    K-mer distance between two count vectors.

    Raises:
        NumericGuardError: If min(length_a, length_b) - k + 1 < 1
    """
    denominator = min(length_a, length_b) - k + 1
    if denominator < 1:
        raise NumericGuardError(
            f"K-mer distance undefined for sequences of length {length_a} and {length_b} with k={k}")
    shared = float(np.minimum(count_a, count_b).sum())
    return float(_distance_from_fraction(shared / denominator))


def _validate_options(missing: str, method: str) -> None:
    if missing not in MISSING_POLICIES:
        raise ConfigurationError(f"missing must be one of {MISSING_POLICIES}, got {missing!r}")
    if method not in DISTANCE_METHODS:
        raise ConfigurationError(f"method must be one of {DISTANCE_METHODS}, got {method!r}")


def _distance_row(counts: np.ndarray, lengths: np.ndarray, k: int,
                  row: int, cols: np.ndarray,
                  method: str = "edgar", missing: str = "raise") -> np.ndarray:
    """
    Distances from sequence `row` to each sequence in `cols`.

    Self-pairs are exactly 0 and never go through the formula.
    """
    cols = np.asarray(cols, dtype=np.int64)
    is_self = cols == row

    if method == "euclidean":
        distances = np.sqrt(((counts[cols] - counts[row]) ** 2).sum(axis=1))
        distances[is_self] = 0.0
        return distances

    denominators = np.minimum(lengths[row], lengths[cols]) - k + 1
    guarded = (denominators < 1) & ~is_self
    if guarded.any() and missing == "raise":
        other = int(cols[np.flatnonzero(guarded)[0]])
        raise NumericGuardError(
            f"K-mer distance undefined between sequences {row} and {other}: "
            f"lengths {lengths[row]} and {lengths[other]} are too short for k={k}",
            pair=(row, other))

    shared = np.minimum(counts[row], counts[cols]).sum(axis=1)
    with np.errstate(divide='ignore', invalid='ignore'):
        fractions = np.where(guarded | is_self, 1.0, shared / np.maximum(denominators, 1))
    distances = _distance_from_fraction(fractions)
    distances[guarded] = np.nan
    distances[is_self] = 0.0
    return distances


@dataclass(frozen=True, eq=False)
class DistanceMatrix:
    """Labelled distance matrix: n x n in full mode, n x t in embedded mode."""
    values: np.ndarray
    row_labels: Tuple[str, ...]
    col_labels: Tuple[str, ...]
    mode: str = "full"
    seeds: Optional[Tuple[int, ...]] = None

    def __post_init__(self):
        values = np.array(self.values, dtype=np.float64)
        if values.shape != (len(self.row_labels), len(self.col_labels)):
            raise ConfigurationError(
                f"Distance values of shape {values.shape} do not match "
                f"{len(self.row_labels)} row and {len(self.col_labels)} column labels")
        values.setflags(write=False)
        object.__setattr__(self, 'values', values)
        object.__setattr__(self, 'row_labels', tuple(self.row_labels))
        object.__setattr__(self, 'col_labels', tuple(self.col_labels))
        if self.seeds is not None:
            object.__setattr__(self, 'seeds', tuple(int(s) for s in self.seeds))

    @property
    def shape(self) -> Tuple[int, int]:
        return self.values.shape

    def to_dict(self) -> Dict:
        return {
            'mode': self.mode,
            'row_labels': list(self.row_labels),
            'col_labels': list(self.col_labels),
            'seeds': list(self.seeds) if self.seeds is not None else None,
            'values': self.values.tolist(),
        }


# Worker state for multiprocess full-matrix rows
_distance_worker_state = None


def _init_distance_worker(counts: np.ndarray, lengths: np.ndarray, k: int,
                          method: str, missing: str) -> None:
    """Initialize shared count vectors once per worker process."""
    global _distance_worker_state
    _distance_worker_state = (counts, lengths, k, method, missing)


def _distance_row_worker(row: int) -> Tuple[int, np.ndarray]:
    counts, lengths, k, method, missing = _distance_worker_state
    cols = np.arange(row + 1, len(counts))
    return row, _distance_row(counts, lengths, k, row, cols, method, missing)


def full_distance_matrix(kmer_counts: KmerCounts,
                         missing: str = "raise",
                         method: str = "edgar",
                         num_threads: Optional[int] = None,
                         show_progress: bool = True) -> DistanceMatrix:
    """
    Calculate the full pairwise k-mer distance matrix.

    Args:
        kmer_counts: Count vectors for n sequences
        missing: "raise" to abort on a pair whose distance is undefined,
            "nan" to store NaN for such pairs
        method: "edgar" (k-mer distance formula) or "euclidean" (Euclidean
            distance between raw count vectors)
        num_threads: Worker processes (None: auto-detect, 0: single-process)
        show_progress: Whether to show a progress bar

    Returns:
        Symmetric n x n DistanceMatrix with an exact zero diagonal

    Raises:
        NumericGuardError: If missing="raise" and some pair is too short for k
    """
    _validate_options(missing, method)
    counts, lengths, k = kmer_counts.counts, kmer_counts.lengths, kmer_counts.k
    n = kmer_counts.n
    values = np.zeros((n, n), dtype=np.float64)

    logger.debug(f"Calculating {n} x {n} k-mer distance matrix ({method})")

    pbar = None
    if show_progress and n > 1:
        pbar = tqdm(total=n - 1, desc="Calculating k-mer distances", unit=" rows")

    rows = range(n - 1)
    num_workers = resolve_num_workers(num_threads, n - 1)
    if num_workers > 1:
        with ProcessPoolExecutor(max_workers=num_workers,
                                 initializer=_init_distance_worker,
                                 initargs=(counts, lengths, k, method, missing)) as executor:
            for row, distances in executor.map(_distance_row_worker, rows):
                values[row, row + 1:] = distances
                values[row + 1:, row] = distances
                if pbar:
                    pbar.update(1)
    else:
        for row in rows:
            distances = _distance_row(counts, lengths, k, row, np.arange(row + 1, n), method, missing)
            values[row, row + 1:] = distances
            values[row + 1:, row] = distances
            if pbar:
                pbar.update(1)

    if pbar:
        pbar.close()

    return DistanceMatrix(values=values, row_labels=kmer_counts.labels,
                          col_labels=kmer_counts.labels, mode="full")


def embedded_distance_matrix(kmer_counts: KmerCounts,
                             seeds: Sequence[int],
                             missing: str = "raise",
                             method: str = "edgar") -> DistanceMatrix:
    """
    Calculate distances from every sequence to each seed sequence.

    Args:
        kmer_counts: Count vectors for n sequences
        seeds: Indices of the t seed sequences
        missing: "raise" or "nan", as for full_distance_matrix
        method: "edgar" or "euclidean"

    Returns:
        n x t DistanceMatrix; seed-to-itself cells are exactly 0
    """
    _validate_options(missing, method)
    seeds = np.asarray(list(seeds), dtype=np.int64)
    n = kmer_counts.n
    if seeds.size == 0:
        raise ConfigurationError("At least one seed is required for embedding")
    if seeds.min() < 0 or seeds.max() >= n:
        raise ConfigurationError(f"Seed indices must lie in [0, {n})")

    values = np.zeros((n, seeds.size), dtype=np.float64)
    for row in range(n):
        values[row] = _distance_row(kmer_counts.counts, kmer_counts.lengths, kmer_counts.k,
                                    row, seeds, method, missing)

    return DistanceMatrix(values=values,
                          row_labels=kmer_counts.labels,
                          col_labels=tuple(kmer_counts.labels[s] for s in seeds),
                          mode="embedded",
                          seeds=tuple(int(s) for s in seeds))


class DistanceProvider(ABC):
    """Abstract base class for distance providers."""

    @abstractmethod
    def get_distance(self, seq_idx1: int, seq_idx2: int) -> float:
        """Get distance between two sequences by index."""
        pass

    @abstractmethod
    def get_distances_from_sequence(self, seq_idx: int, target_indices: Set[int]) -> Dict[int, float]:
        """Get distances from one sequence to a set of target sequences."""
        pass

    @abstractmethod
    def submatrix(self, seq_indices: Sequence[int]) -> np.ndarray:
        """Dense distance matrix restricted to the given sequences, in the given order."""
        pass

    def max_distance(self, seq_indices: Sequence[int], stop_above: Optional[float] = None) -> float:
        """
        Maximum pairwise distance within a set of sequences.

        If stop_above is given, returns as soon as a distance above it is seen;
        the returned value is then a lower bound that already exceeds stop_above.
        """
        members = list(seq_indices)
        largest = 0.0
        for pos, idx in enumerate(members[:-1]):
            row = self.get_distances_from_sequence(idx, members[pos + 1:])
            values = np.array(list(row.values()), dtype=np.float64)
            if values.size and not np.all(np.isnan(values)):
                largest = max(largest, float(np.nanmax(values)))
            if stop_above is not None and largest > stop_above:
                break
        return largest


class KmerDistanceProvider(DistanceProvider):
    """Distance provider that computes k-mer distances on demand from count vectors.

    Pairwise results requested through get_distance are cached; whole rows and
    blocks are computed vectorised without caching.
    """

    def __init__(self, kmer_counts: KmerCounts, missing: str = "raise"):
        _validate_options(missing, "edgar")
        self.kmer_counts = kmer_counts
        self.missing = missing
        self.n = kmer_counts.n
        self._distance_cache: Dict[Tuple[int, int], float] = {}

    def get_distance(self, idx1: int, idx2: int) -> float:
        if idx1 == idx2:
            return 0.0

        cache_key = (min(idx1, idx2), max(idx1, idx2))
        if cache_key in self._distance_cache:
            return self._distance_cache[cache_key]

        distance = float(self._row(cache_key[0], [cache_key[1]])[0])
        self._distance_cache[cache_key] = distance
        return distance

    def get_distances_from_sequence(self, idx: int, targets) -> Dict[int, float]:
        targets = list(targets)
        if not targets:
            return {}
        distances = self._row(idx, targets)
        return {target: float(d) for target, d in zip(targets, distances)}

    def submatrix(self, seq_indices: Sequence[int]) -> np.ndarray:
        members = list(seq_indices)
        matrix = np.zeros((len(members), len(members)))
        for pos, idx in enumerate(members[:-1]):
            row = self._row(idx, members[pos + 1:])
            matrix[pos, pos + 1:] = row
            matrix[pos + 1:, pos] = row
        return matrix

    def _row(self, idx: int, targets: List[int]) -> np.ndarray:
        kc = self.kmer_counts
        return _distance_row(kc.counts, kc.lengths, kc.k, idx, np.asarray(targets), "edgar", self.missing)


class PrecomputedDistanceProvider(DistanceProvider):
    """Distance provider that wraps a precomputed full distance matrix."""

    def __init__(self, distance_matrix):
        if isinstance(distance_matrix, DistanceMatrix):
            if distance_matrix.mode != "full":
                raise ConfigurationError("PrecomputedDistanceProvider requires a full distance matrix")
            distance_matrix = distance_matrix.values
        self.distance_matrix = np.asarray(distance_matrix)
        self.n = len(self.distance_matrix)

    def get_distance(self, idx1: int, idx2: int) -> float:
        return float(self.distance_matrix[idx1, idx2])

    def get_distances_from_sequence(self, idx: int, targets) -> Dict[int, float]:
        return {target: float(self.distance_matrix[idx, target]) for target in targets}

    def submatrix(self, seq_indices: Sequence[int]) -> np.ndarray:
        members = list(seq_indices)
        return self.distance_matrix[np.ix_(members, members)]
