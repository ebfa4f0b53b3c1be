"""
kmerclust: Alignment-free k-mer clustering

A Python package for clustering biological sequences by k-mer content:
ambiguity-aware k-mer counting, k-mer distances (full or seed-embedded),
divisive 2-means trees and threshold-based OTU assignment.
"""

__version__ = "0.1.0"

from .alphabet import Alphabet, EncodedSequence, DNA, RNA, AMINO_ACIDS, encode_sequence, get_alphabet
from .counting import KmerCounts, count_kmers, count_sequences, kmer_names
from .distances import (
    DistanceMatrix,
    DistanceProvider,
    KmerDistanceProvider,
    PrecomputedDistanceProvider,
    kmer_distance,
    full_distance_matrix,
    embedded_distance_matrix
)
from .embedding import default_seed_count, select_seeds, mbed
from .kmeans import KMeansPartitioner, KMeansResult, kmeans_partition
from .representatives import select_representative
from .tree import ClusterTree, TreeNode
from .divisive import DivisiveClustering
from .otu import OTUClustering, OTUAssignment
from .errors import (
    KmerClustError,
    ConfigurationError,
    InputError,
    NumericGuardError,
    ConvergenceError
)
from .utils import (
    load_sequences_from_fasta,
    validate_sequences,
    save_counts,
    save_distance_matrix,
    save_tree,
    save_otus,
    format_otu_output
)

__all__ = [
    "Alphabet",
    "EncodedSequence",
    "DNA",
    "RNA",
    "AMINO_ACIDS",
    "encode_sequence",
    "get_alphabet",
    "KmerCounts",
    "count_kmers",
    "count_sequences",
    "kmer_names",
    "DistanceMatrix",
    "DistanceProvider",
    "KmerDistanceProvider",
    "PrecomputedDistanceProvider",
    "kmer_distance",
    "full_distance_matrix",
    "embedded_distance_matrix",
    "default_seed_count",
    "select_seeds",
    "mbed",
    "KMeansPartitioner",
    "KMeansResult",
    "kmeans_partition",
    "select_representative",
    "ClusterTree",
    "TreeNode",
    "DivisiveClustering",
    "OTUClustering",
    "OTUAssignment",
    "KmerClustError",
    "ConfigurationError",
    "InputError",
    "NumericGuardError",
    "ConvergenceError",
    "load_sequences_from_fasta",
    "validate_sequences",
    "save_counts",
    "save_distance_matrix",
    "save_tree",
    "save_otus",
    "format_otu_output"
]
