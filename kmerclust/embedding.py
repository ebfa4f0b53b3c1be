"""
Seed-based embedding for kmerclust.

Each sequence is represented by its k-mer distances to a small set of seed
sequences instead of to every other sequence, reducing the work from O(n^2)
to O(n t). Without explicit seeds, t = ceil((log2 n)^2) seeds are chosen by
k-means over the count vectors, one representative per group.
"""

import logging
import math
from typing import List, Optional, Sequence, Union
import numpy as np

from .counting import KmerCounts
from .distances import DistanceMatrix, KmerDistanceProvider, embedded_distance_matrix
from .errors import ConfigurationError
from .kmeans import DEFAULT_NSTART, KMeansPartitioner
from .representatives import select_representative, validate_method

logger = logging.getLogger(__name__)


def default_seed_count(n: int) -> int:
    """ceil((log2 n)^2), clamped to [1, n]."""
    if n < 1:
        raise ConfigurationError("Seed count is undefined for an empty sequence set")
    return max(1, min(n, math.ceil(math.log2(n) ** 2)))


def select_seeds(kmer_counts: KmerCounts,
                 n_seeds: Optional[int] = None,
                 method: str = "central",
                 nstart: int = DEFAULT_NSTART,
                 rng_seed: int = 0) -> List[int]:
    """
    Choose seed sequences by k-means over the count vectors.

    Args:
        kmer_counts: Count vectors
        n_seeds: Number of seeds (default: default_seed_count(n))
        method: Representative policy used within each k-means group
        nstart: k-means restarts
        rng_seed: k-means seed

    Returns:
        Sorted seed indices
    """
    validate_method(method)
    n = kmer_counts.n
    if n_seeds is None:
        n_seeds = default_seed_count(n)
    elif isinstance(n_seeds, bool) or not isinstance(n_seeds, (int, np.integer)) or not 1 <= n_seeds <= n:
        raise ConfigurationError(f"n_seeds must be an integer between 1 and {n}, got {n_seeds!r}")

    if n_seeds >= n:
        return list(range(n))

    n_distinct = len(np.unique(kmer_counts.counts, axis=0))
    if n_distinct < n_seeds:
        logger.warning(f"Only {n_distinct} distinct count vectors; reducing seed count from {n_seeds}")
        n_seeds = n_distinct

    logger.debug(f"Selecting {n_seeds} seeds from {n} sequences")
    result = KMeansPartitioner(n_seeds, nstart=nstart).partition(kmer_counts.counts, rng_seed=rng_seed)

    provider = KmerDistanceProvider(kmer_counts)
    seeds = [select_representative(group, kmer_counts, method, provider) for group in result.groups()]
    return sorted(seeds)


def resolve_seeds(kmer_counts: KmerCounts, seeds: Sequence[Union[int, str]]) -> List[int]:
    """Turn seed identifiers (labels) or indices into indices."""
    resolved = []
    for seed in seeds:
        if isinstance(seed, str):
            resolved.append(kmer_counts.index_of(seed))
        elif isinstance(seed, (int, np.integer)) and not isinstance(seed, bool):
            if not 0 <= seed < kmer_counts.n:
                raise ConfigurationError(f"Seed index {seed} out of range for {kmer_counts.n} sequences")
            resolved.append(int(seed))
        else:
            raise ConfigurationError(f"Seeds must be indices or identifiers, got {seed!r}")
    if not resolved:
        raise ConfigurationError("Seed list is empty")
    if len(set(resolved)) != len(resolved):
        raise ConfigurationError("Seed list contains duplicates")
    return resolved


def mbed(kmer_counts: KmerCounts,
         seeds: Optional[Sequence[Union[int, str]]] = None,
         n_seeds: Optional[int] = None,
         method: str = "central",
         nstart: int = DEFAULT_NSTART,
         rng_seed: int = 0,
         missing: str = "raise") -> DistanceMatrix:
    """
    Embed sequences as k-mer distances to a seed subset.

    Args:
        kmer_counts: Count vectors
        seeds: Explicit seed indices or identifiers; chosen automatically if None
        n_seeds: Seed count for automatic selection
        method: Representative policy for automatic selection
        nstart: k-means restarts for automatic selection
        rng_seed: k-means seed for automatic selection
        missing: "raise" or "nan" for pairs whose distance is undefined

    Returns:
        n x t embedded DistanceMatrix
    """
    if seeds is None:
        seed_indices = select_seeds(kmer_counts, n_seeds=n_seeds, method=method,
                                    nstart=nstart, rng_seed=rng_seed)
    else:
        seed_indices = resolve_seeds(kmer_counts, seeds)

    logger.info(f"Embedding {kmer_counts.n} sequences against {len(seed_indices)} seeds")
    return embedded_distance_matrix(kmer_counts, seed_indices, missing=missing)
