"""
K-mer counting for kmerclust.

Each encoded sequence is reduced to a dense vector of A^k k-mer counts,
indexed by the lexicographic rank of the k-mer over the alphabet (first
symbol most significant). Windows touching an ignore position are skipped;
windows with ambiguity codes spread one unit of weight over every k-mer they
may represent.
"""

import logging
import math
from dataclasses import dataclass
from itertools import product
from typing import List, Optional, Sequence, Tuple, Union
from concurrent.futures import ProcessPoolExecutor
import numpy as np
from numpy.lib.stride_tricks import sliding_window_view
from tqdm import tqdm

from .alphabet import Alphabet, EncodedSequence, DNA
from .errors import ConfigurationError, InputError
from .utils import resolve_num_workers

logger = logging.getLogger(__name__)

# Maximum number of ambiguous positions allowed inside a single window
DEFAULT_MAX_AMBIGUOUS = 4

# Largest dense count vector (A^k columns) a k-mer space may occupy
MAX_KMER_COLUMNS = 2 ** 30


def validate_k(k: int, alphabet_size: int) -> None:
    """Check that k is a positive integer and the A^k k-mer space fits in a dense count vector."""
    if isinstance(k, bool) or not isinstance(k, (int, np.integer)):
        raise ConfigurationError(f"k must be an integer, got {k!r}")
    if k < 1:
        raise ConfigurationError(f"k must be at least 1, got {k}")
    if alphabet_size ** int(k) > MAX_KMER_COLUMNS:
        raise ConfigurationError(
            f"k={k} is too large for an alphabet of {alphabet_size} symbols "
            f"({alphabet_size}^{k} k-mers exceed the limit of {MAX_KMER_COLUMNS} count columns)")


def kmer_names(alphabet: Alphabet, k: int) -> List[str]:
    """All A^k k-mers in index order."""
    validate_k(k, alphabet.size)
    return ["".join(p) for p in product(alphabet.symbols, repeat=k)]


def _window_view(encoded: EncodedSequence, k: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Return (windows of codes, has_skip mask, ambiguous count) for every window."""
    windows = sliding_window_view(encoded.codes, k)
    has_skip = (windows == -2).any(axis=1)
    n_ambiguous = (windows == -1).sum(axis=1)
    return windows, has_skip, n_ambiguous


def check_ambiguity_fanout(encoded: EncodedSequence, k: int,
                           max_ambiguous: int = DEFAULT_MAX_AMBIGUOUS) -> None:
    """
    Enforce the cap on ambiguous positions within one counted window.

    Raises:
        ConfigurationError: If any window without skipped positions holds
            more than max_ambiguous ambiguous positions
    """
    if encoded.length < k:
        return
    _, has_skip, n_ambiguous = _window_view(encoded, k)
    counted = ~has_skip
    if counted.any():
        worst = int(n_ambiguous[counted].max())
        if worst > max_ambiguous:
            start = int(np.flatnonzero(counted & (n_ambiguous == worst))[0])
            raise ConfigurationError(
                f"Window at position {start + 1} contains {worst} ambiguous positions, "
                f"exceeding the fan-out cap of {max_ambiguous}")


def _add_ambiguous_window(counts: np.ndarray, window_weights: np.ndarray, powers: Sequence[int]) -> None:
    """Distribute one window over all k-mers implied by its nonzero per-position weights."""
    choices = []
    for row in window_weights:
        nonzero = np.flatnonzero(row)
        choices.append([(int(i), float(row[i])) for i in nonzero])

    for combination in product(*choices):
        index = sum(symbol * power for (symbol, _), power in zip(combination, powers))
        counts[index] += math.prod(weight for _, weight in combination)


def count_kmers(encoded: EncodedSequence, k: int,
                max_ambiguous: int = DEFAULT_MAX_AMBIGUOUS) -> np.ndarray:
    """
    Count the k-mers of a single encoded sequence.

    Args:
        encoded: Encoded sequence
        k: Word length
        max_ambiguous: Maximum number of ambiguous positions in one window

    Returns:
        Float array of length A^k; for sequences without ambiguity or ignore
        symbols the entries sum to max(0, L - k + 1)
    """
    alphabet_size = encoded.alphabet.size
    validate_k(k, alphabet_size)
    counts = np.zeros(alphabet_size ** k, dtype=np.float64)
    if encoded.length < k:
        return counts

    check_ambiguity_fanout(encoded, k, max_ambiguous)
    windows, has_skip, n_ambiguous = _window_view(encoded, k)
    powers = [alphabet_size ** (k - 1 - j) for j in range(k)]

    clean = ~has_skip & (n_ambiguous == 0)
    if clean.any():
        indices = windows[clean] @ np.array(powers, dtype=np.int64)
        counts += np.bincount(indices, minlength=counts.size)

    for start in np.flatnonzero(~has_skip & (n_ambiguous > 0)):
        _add_ambiguous_window(counts, encoded.weights[start:start + k], powers)

    return counts


@dataclass(frozen=True, eq=False)
class KmerCounts:
    """Count vectors for a set of sequences (n x A^k), with effective lengths and labels."""
    counts: np.ndarray
    lengths: np.ndarray
    labels: Tuple[str, ...]
    alphabet: Alphabet
    k: int

    def __post_init__(self):
        counts = np.array(self.counts, dtype=np.float64)
        lengths = np.array(self.lengths, dtype=np.int64)
        if counts.ndim != 2 or counts.shape[1] != self.alphabet.size ** self.k:
            raise ConfigurationError(
                f"Count matrix must have {self.alphabet.size ** self.k} columns, got shape {counts.shape}")
        if lengths.shape != (counts.shape[0],) or len(self.labels) != counts.shape[0]:
            raise ConfigurationError("Lengths and labels must have one entry per count vector")
        counts.setflags(write=False)
        lengths.setflags(write=False)
        object.__setattr__(self, 'counts', counts)
        object.__setattr__(self, 'lengths', lengths)
        object.__setattr__(self, 'labels', tuple(self.labels))

    @property
    def n(self) -> int:
        return int(self.counts.shape[0])

    def kmer_names(self) -> List[str]:
        return kmer_names(self.alphabet, self.k)

    def index_of(self, label: str) -> int:
        try:
            return self.labels.index(label)
        except ValueError:
            raise InputError(f"Unknown sequence identifier '{label}'")

    def subset(self, indices: Sequence[int]) -> 'KmerCounts':
        """Counts restricted to the given rows, in the given order."""
        indices = list(indices)
        return KmerCounts(
            counts=self.counts[indices],
            lengths=self.lengths[indices],
            labels=tuple(self.labels[i] for i in indices),
            alphabet=self.alphabet,
            k=self.k,
        )


# Worker state for multiprocess counting
_count_worker_k = None
_count_worker_max_ambiguous = None


def _init_count_worker(k: int, max_ambiguous: int) -> None:
    """Initialize counting parameters once per worker process."""
    global _count_worker_k, _count_worker_max_ambiguous
    _count_worker_k = k
    _count_worker_max_ambiguous = max_ambiguous


def _count_worker(encoded: EncodedSequence) -> np.ndarray:
    return count_kmers(encoded, _count_worker_k, _count_worker_max_ambiguous)


def _as_sequence_list(sequences) -> list:
    """Normalize ragged input or a rectangular character matrix into a list."""
    if isinstance(sequences, np.ndarray):
        if sequences.ndim == 2:
            return ["".join(str(symbol) for symbol in row) for row in sequences]
        if sequences.ndim == 1:
            return [str(s) for s in sequences]
        raise InputError(f"Sequence matrix must be 1- or 2-dimensional, got {sequences.ndim} dimensions")
    return list(sequences)


def count_sequences(sequences: Union[Sequence[Union[str, EncodedSequence]], np.ndarray],
                    k: int,
                    alphabet: Optional[Alphabet] = None,
                    labels: Optional[Sequence[str]] = None,
                    max_ambiguous: int = DEFAULT_MAX_AMBIGUOUS,
                    num_threads: Optional[int] = None,
                    show_progress: bool = True) -> KmerCounts:
    """
    Count k-mers for a collection of sequences.

    All validation (empty input, k, unknown symbols, alphabet consistency and
    the ambiguity fan-out cap) happens before any counting starts.

    Args:
        sequences: Ragged list of residue strings or EncodedSequence objects,
            or a rectangular 2-D character array of pre-aligned sequences
        k: Word length
        alphabet: Alphabet for string input (default: alphabet of the first
            pre-encoded sequence, otherwise DNA)
        labels: Sequence identifiers (default: seq_0, seq_1, ...)
        max_ambiguous: Maximum number of ambiguous positions in one window
        num_threads: Worker processes (None: auto-detect, 0: single-process)
        show_progress: Whether to show a progress bar

    Returns:
        KmerCounts with one row per input sequence
    """
    items = _as_sequence_list(sequences)
    if not items:
        raise InputError("No sequences provided")

    if alphabet is None:
        alphabet = next((s.alphabet for s in items if isinstance(s, EncodedSequence)), DNA)
    validate_k(k, alphabet.size)
    if isinstance(max_ambiguous, bool) or not isinstance(max_ambiguous, int) or max_ambiguous < 0:
        raise ConfigurationError(f"max_ambiguous must be a non-negative integer, got {max_ambiguous!r}")

    if labels is None:
        labels = [f"seq_{i}" for i in range(len(items))]
    labels = [str(label) for label in labels]
    if len(labels) != len(items):
        raise InputError(f"Got {len(labels)} labels for {len(items)} sequences")
    if len(set(labels)) != len(labels):
        raise InputError("Sequence identifiers must be unique")

    encoded = []
    for label, item in zip(labels, items):
        if isinstance(item, EncodedSequence):
            if item.alphabet != alphabet:
                raise ConfigurationError(
                    f"Sequence '{label}' is encoded over alphabet '{item.alphabet.name}', "
                    f"expected '{alphabet.name}'")
            encoded.append(item)
            continue
        try:
            encoded.append(alphabet.encode(item))
        except InputError as e:
            raise InputError(f"Sequence '{label}': {e}") from e

    for label, item in zip(labels, encoded):
        try:
            check_ambiguity_fanout(item, k, max_ambiguous)
        except ConfigurationError as e:
            raise ConfigurationError(f"Sequence '{label}': {e}") from e

    n = len(encoded)
    logger.info(f"Counting {k}-mers for {n} sequences over the {alphabet.name} alphabet "
                f"({alphabet.size ** k} possible k-mers)")

    counts = np.zeros((n, alphabet.size ** k), dtype=np.float64)
    lengths = np.array([item.effective_length for item in encoded], dtype=np.int64)

    pbar = None
    if show_progress:
        pbar = tqdm(total=n, desc=f"Counting {k}-mers", unit=" seqs")

    num_workers = resolve_num_workers(num_threads, n)
    if num_workers > 1:
        with ProcessPoolExecutor(max_workers=num_workers,
                                 initializer=_init_count_worker,
                                 initargs=(k, max_ambiguous)) as executor:
            chunksize = max(1, n // (num_workers * 4))
            for row, vector in enumerate(executor.map(_count_worker, encoded, chunksize=chunksize)):
                counts[row] = vector
                if pbar:
                    pbar.update(1)
    else:
        for row, item in enumerate(encoded):
            counts[row] = count_kmers(item, k, max_ambiguous)
            if pbar:
                pbar.update(1)

    if pbar:
        pbar.close()

    return KmerCounts(counts=counts, lengths=lengths, labels=tuple(labels), alphabet=alphabet, k=k)
