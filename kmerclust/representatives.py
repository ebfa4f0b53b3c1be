"""Representative selection for clusters, OTUs and embedding seeds."""

from typing import Optional, Sequence
import numpy as np

from .counting import KmerCounts
from .distances import DistanceProvider, KmerDistanceProvider
from .errors import ConfigurationError, InputError

REPRESENTATIVE_METHODS = ("central", "centroid", "farthest", "longest")


def validate_method(method: str) -> str:
    if method not in REPRESENTATIVE_METHODS:
        raise ConfigurationError(
            f"Unknown representative method '{method}'. Choose from: {', '.join(REPRESENTATIVE_METHODS)}")
    return method


def select_representative(members: Sequence[int],
                          kmer_counts: KmerCounts,
                          method: str = "central",
                          provider: Optional[DistanceProvider] = None) -> int:
    """
    Pick the member that stands for a group.

    Args:
        members: Sequence indices in the group
        kmer_counts: Count vectors for all sequences
        method: "central" (lowest mean k-mer distance to the other members),
            "centroid" (closest to the mean count vector), "farthest"
            (highest mean distance) or "longest" (largest effective length)
        provider: Distance provider to reuse (default: a fresh KmerDistanceProvider)

    Returns:
        Index of the representative; ties go to the lowest index
    """
    validate_method(method)
    members = sorted(int(m) for m in members)
    if not members:
        raise InputError("Cannot select a representative from an empty group")
    if len(members) == 1:
        return members[0]

    if method in ("central", "farthest"):
        provider = provider or KmerDistanceProvider(kmer_counts)
        matrix = provider.submatrix(members)
        mean_distances = matrix.sum(axis=1) / (len(members) - 1)
        pick = np.argmin(mean_distances) if method == "central" else np.argmax(mean_distances)
    elif method == "centroid":
        vectors = kmer_counts.counts[members]
        offsets = vectors - vectors.mean(axis=0)
        pick = np.argmin(np.einsum('ij,ij->i', offsets, offsets))
    else:
        pick = np.argmax(kmer_counts.lengths[members])

    return members[int(pick)]
