"""
Residue alphabets and sequence encoding for kmerclust.

An Alphabet is plain configuration data: an ordered set of canonical symbols,
an ambiguity table mapping codes to weighted canonical symbols, and an ignore
symbol. Encoding turns a residue string into per-position weight vectors over
the canonical symbols, with ignore positions marked as skipped.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping, Optional, Sequence, Union
import numpy as np

from .errors import ConfigurationError, InputError

WEIGHT_TOLERANCE = 1e-9

AmbiguityEntry = Union[Mapping[str, float], Iterable[str]]


@dataclass(frozen=True)
class Alphabet:
    """
    Canonical residue alphabet with ambiguity codes and an ignore symbol.

    Ambiguity entries may list canonical symbols (equal weights) or map them
    to explicit fractional weights summing to 1.
    """
    name: str
    symbols: str
    ambiguity: Mapping[str, AmbiguityEntry] = field(default_factory=dict)
    ignore: Optional[str] = "-"
    case_sensitive: bool = False
    _rows: Dict[str, int] = field(init=False, repr=False, compare=False)
    _table: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        symbols = self.symbols if self.case_sensitive else self.symbols.upper()
        if not symbols:
            raise ConfigurationError(f"Alphabet '{self.name}' has no canonical symbols")
        if len(set(symbols)) != len(symbols):
            raise ConfigurationError(f"Alphabet '{self.name}' has duplicate symbols: {symbols}")
        object.__setattr__(self, 'symbols', symbols)

        ignore = self.ignore
        if ignore is not None:
            if len(ignore) != 1:
                raise ConfigurationError(f"Ignore symbol must be a single character, got {ignore!r}")
            if not self.case_sensitive:
                ignore = ignore.upper()
            if ignore in symbols:
                raise ConfigurationError(f"Ignore symbol {ignore!r} is also a canonical symbol")
            object.__setattr__(self, 'ignore', ignore)

        normalized = {}
        for code, entry in self.ambiguity.items():
            code_key = code if self.case_sensitive else code.upper()
            if len(code_key) != 1:
                raise ConfigurationError(f"Ambiguity code must be a single character, got {code!r}")
            if code_key in symbols or code_key == ignore:
                raise ConfigurationError(
                    f"Ambiguity code {code_key!r} collides with a canonical or ignore symbol")
            normalized[code_key] = self._normalize_weights(code_key, entry, symbols)
        object.__setattr__(self, 'ambiguity', normalized)

        # One lookup row per recognised symbol
        size = len(symbols)
        rows = {}
        table = []
        for i, symbol in enumerate(symbols):
            row = np.zeros(size)
            row[i] = 1.0
            rows[symbol] = len(table)
            table.append(row)
        for code, weights in normalized.items():
            row = np.zeros(size)
            for symbol, weight in weights.items():
                row[symbols.index(symbol)] = weight
            rows[code] = len(table)
            table.append(row)
        table_array = np.array(table, dtype=np.float64)
        table_array.setflags(write=False)
        object.__setattr__(self, '_rows', rows)
        object.__setattr__(self, '_table', table_array)

    def _normalize_weights(self, code: str, entry: AmbiguityEntry, symbols: str) -> Dict[str, float]:
        if isinstance(entry, str):
            entry = list(entry)
        if isinstance(entry, Mapping):
            weights = {(s if self.case_sensitive else s.upper()): float(w) for s, w in entry.items()}
        else:
            members = [s if self.case_sensitive else s.upper() for s in entry]
            if not members:
                raise ConfigurationError(f"Ambiguity code {code!r} resolves to no symbols")
            weights = {s: 1.0 / len(set(members)) for s in members}

        if not weights:
            raise ConfigurationError(f"Ambiguity code {code!r} resolves to no symbols")
        for symbol, weight in weights.items():
            if symbol not in symbols:
                raise ConfigurationError(
                    f"Ambiguity code {code!r} refers to non-canonical symbol {symbol!r}")
            if weight <= 0:
                raise ConfigurationError(
                    f"Ambiguity code {code!r} has non-positive weight {weight} for {symbol!r}")
        total = sum(weights.values())
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise ConfigurationError(f"Weights for ambiguity code {code!r} sum to {total}, not 1")
        return weights

    @property
    def size(self) -> int:
        """Number of canonical symbols (A)."""
        return len(self.symbols)

    def index_of(self, symbol: str) -> int:
        """Lexicographic rank of a canonical symbol."""
        key = symbol if self.case_sensitive else symbol.upper()
        if key not in self.symbols:
            raise InputError(f"{symbol!r} is not a canonical symbol of alphabet '{self.name}'")
        return self.symbols.index(key)

    def is_recognized(self, symbol: str) -> bool:
        key = symbol if self.case_sensitive else symbol.upper()
        return key in self._rows or key == self.ignore

    def encode(self, sequence: Union[str, Sequence[str]]) -> 'EncodedSequence':
        """
        Encode a residue sequence into per-position weight vectors.

        Args:
            sequence: Residue string (or sequence of single-character symbols)

        Returns:
            EncodedSequence over this alphabet

        Raises:
            InputError: If a symbol is neither canonical, an ambiguity code,
                nor the ignore symbol
        """
        row_indices = np.empty(len(sequence), dtype=np.int64)
        for position, symbol in enumerate(sequence):
            key = symbol if self.case_sensitive else symbol.upper()
            row = self._rows.get(key)
            if row is not None:
                row_indices[position] = row
            elif key == self.ignore:
                row_indices[position] = -1
            else:
                raise InputError(
                    f"Unrecognized symbol {symbol!r} at position {position + 1} "
                    f"for alphabet '{self.name}'")

        skip = row_indices < 0
        weights = np.zeros((len(row_indices), self.size), dtype=np.float64)
        if len(row_indices):
            weights[~skip] = self._table[row_indices[~skip]]
        return EncodedSequence(weights=weights, skip=skip, alphabet=self)


@dataclass(frozen=True, eq=False)
class EncodedSequence:
    """Per-position weight vectors (L x A) with an explicit skip mask for ignore positions."""
    weights: np.ndarray
    skip: np.ndarray
    alphabet: Alphabet

    def __post_init__(self):
        weights = np.array(self.weights, dtype=np.float64)
        skip = np.array(self.skip, dtype=bool)
        if weights.ndim != 2 or weights.shape[1] != self.alphabet.size:
            raise ConfigurationError(
                f"Encoded weights must have shape (L, {self.alphabet.size}), got {weights.shape}")
        if skip.shape != (weights.shape[0],):
            raise ConfigurationError("Skip mask length does not match encoded sequence length")
        weights.setflags(write=False)
        skip.setflags(write=False)
        object.__setattr__(self, 'weights', weights)
        object.__setattr__(self, 'skip', skip)

    @property
    def length(self) -> int:
        """Number of positions including skipped ones."""
        return int(self.weights.shape[0])

    @property
    def effective_length(self) -> int:
        """Number of non-skipped positions."""
        return int(self.length - np.count_nonzero(self.skip))

    @property
    def codes(self) -> np.ndarray:
        """Canonical index per position; -1 for ambiguous positions, -2 for skipped ones."""
        codes = np.argmax(self.weights, axis=1) if self.length else np.zeros(0, dtype=np.int64)
        codes = codes.astype(np.int64)
        if self.length:
            one_hot = np.count_nonzero(self.weights, axis=1) == 1
            codes[~one_hot] = -1
        codes[self.skip] = -2
        return codes


def encode_sequence(sequence: Union[str, Sequence[str]], alphabet: Alphabet) -> EncodedSequence:
    """Encode a sequence over the given alphabet."""
    return alphabet.encode(sequence)


_IUPAC_NUCLEOTIDES = {
    'R': 'AG', 'Y': 'CT', 'S': 'CG', 'W': 'AT', 'K': 'GT', 'M': 'AC',
    'B': 'CGT', 'D': 'AGT', 'H': 'ACT', 'V': 'ACG', 'N': 'ACGT',
}

DNA = Alphabet(
    name="dna",
    symbols="ACGT",
    ambiguity={**_IUPAC_NUCLEOTIDES, 'U': 'T'},
)

RNA = Alphabet(
    name="rna",
    symbols="ACGU",
    ambiguity={**{code: members.replace('T', 'U') for code, members in _IUPAC_NUCLEOTIDES.items()},
               'T': 'U'},
)

AMINO_ACIDS = Alphabet(
    name="protein",
    symbols="ACDEFGHIKLMNPQRSTVWY",
    ambiguity={
        'B': 'DN',
        'Z': 'EQ',
        'J': 'IL',
        'X': 'ACDEFGHIKLMNPQRSTVWY',
        'U': 'C',  # selenocysteine
        'O': 'K',  # pyrrolysine
    },
)

_ALPHABETS = {
    'dna': DNA,
    'rna': RNA,
    'protein': AMINO_ACIDS,
    'aa': AMINO_ACIDS,
}


def get_alphabet(name: str) -> Alphabet:
    """Look up a preset alphabet by name ('dna', 'rna', 'protein' or 'aa')."""
    try:
        return _ALPHABETS[name.lower()]
    except KeyError:
        raise ConfigurationError(
            f"Unknown alphabet '{name}'. Choose from: {', '.join(sorted(_ALPHABETS))}")
