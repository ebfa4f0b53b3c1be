"""Exception types raised by kmerclust."""

from typing import Optional, Tuple


class KmerClustError(Exception):
    """Base class for all kmerclust errors."""
    pass


class ConfigurationError(KmerClustError):
    """Raised for invalid parameters (k, alphabet, cluster counts, fan-out caps)."""
    pass


class InputError(KmerClustError):
    """Raised when the input sequences themselves are unusable."""
    pass


class NumericGuardError(KmerClustError):
    """Raised when the k-mer distance is undefined for a pair of sequences.

    The distance denominator min(L_a, L_b) - k + 1 must be at least 1.
    """

    def __init__(self, message: str, pair: Optional[Tuple[int, int]] = None):
        super().__init__(message)
        self.pair = pair


class ConvergenceError(KmerClustError):
    """Raised when k-means exhausts its retry budget on empty clusters."""
    pass
