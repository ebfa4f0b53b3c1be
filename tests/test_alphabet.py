"""
Tests for residue alphabets and sequence encoding.
"""

import pytest
import numpy as np

from kmerclust.alphabet import Alphabet, DNA, RNA, AMINO_ACIDS, encode_sequence, get_alphabet
from kmerclust.errors import ConfigurationError, InputError


class TestPresetAlphabets:
    """Test suite for the built-in alphabets."""

    def test_dna_symbol_order(self):
        """Test that DNA canonical symbols are ranked A < C < G < T."""
        assert DNA.symbols == "ACGT"
        assert DNA.size == 4
        assert [DNA.index_of(s) for s in "ACGT"] == [0, 1, 2, 3]

    def test_iupac_codes_have_equal_weights(self):
        """Test that IUPAC codes spread weight evenly over their bases."""
        assert DNA.ambiguity['N'] == {'A': 0.25, 'C': 0.25, 'G': 0.25, 'T': 0.25}
        assert DNA.ambiguity['R'] == {'A': 0.5, 'G': 0.5}

    def test_rna_maps_t_to_u(self):
        """Test that RNA accepts T as a synonym for U."""
        encoded = RNA.encode("T")
        assert encoded.weights[0, RNA.index_of('U')] == 1.0

    def test_protein_alphabet(self):
        """Test the 20-residue protein alphabet and its ambiguity codes."""
        assert AMINO_ACIDS.size == 20
        assert AMINO_ACIDS.ambiguity['B'] == {'D': 0.5, 'N': 0.5}
        assert np.isclose(sum(AMINO_ACIDS.ambiguity['X'].values()), 1.0)

    def test_get_alphabet(self):
        """Test alphabet lookup by name."""
        assert get_alphabet("dna") is DNA
        assert get_alphabet("Protein") is AMINO_ACIDS
        assert get_alphabet("aa") is AMINO_ACIDS
        with pytest.raises(ConfigurationError):
            get_alphabet("klingon")


class TestCustomAlphabet:
    """Test suite for user-defined alphabets."""

    def test_explicit_fractional_weights(self):
        """Test ambiguity codes with non-uniform weights."""
        alphabet = Alphabet(name="binary", symbols="XY", ambiguity={'Z': {'X': 0.25, 'Y': 0.75}}, ignore=".")
        encoded = alphabet.encode("Z")
        assert encoded.weights[0].tolist() == [0.25, 0.75]

    def test_weights_must_sum_to_one(self):
        """Test that ambiguity weights not summing to 1 are rejected."""
        with pytest.raises(ConfigurationError):
            Alphabet(name="bad", symbols="XY", ambiguity={'Z': {'X': 0.5, 'Y': 0.6}})

    def test_weight_tolerance(self):
        """Test that rounding error within tolerance is accepted."""
        Alphabet(name="ok", symbols="XYW", ambiguity={'Z': {'X': 1 / 3, 'Y': 1 / 3, 'W': 1 / 3}})

    def test_unknown_member_rejected(self):
        """Test that ambiguity codes must resolve to canonical symbols."""
        with pytest.raises(ConfigurationError):
            Alphabet(name="bad", symbols="XY", ambiguity={'Z': 'XQ'})

    def test_duplicate_symbols_rejected(self):
        """Test that duplicate canonical symbols are rejected."""
        with pytest.raises(ConfigurationError):
            Alphabet(name="bad", symbols="XYX")

    def test_ignore_collides_with_symbol(self):
        """Test that the ignore symbol cannot be canonical."""
        with pytest.raises(ConfigurationError):
            Alphabet(name="bad", symbols="XY", ignore="X")

    def test_case_sensitive_alphabet(self):
        """Test that case-sensitive alphabets distinguish upper and lower case."""
        alphabet = Alphabet(name="cs", symbols="aA", case_sensitive=True)
        encoded = alphabet.encode("Aa")
        assert encoded.codes.tolist() == [1, 0]


class TestEncoding:
    """Test suite for sequence encoding."""

    def test_canonical_sequence(self):
        """Test one-hot encoding of canonical symbols."""
        encoded = encode_sequence("ACGT", DNA)
        assert encoded.length == 4
        assert encoded.effective_length == 4
        np.testing.assert_array_equal(encoded.weights, np.eye(4))
        assert encoded.codes.tolist() == [0, 1, 2, 3]

    def test_lowercase_input(self):
        """Test that lower-case residues are accepted by case-insensitive alphabets."""
        assert encode_sequence("acgt", DNA).codes.tolist() == [0, 1, 2, 3]

    def test_ignore_positions_are_skipped(self):
        """Test that gap characters are marked as skipped and excluded from the effective length."""
        encoded = encode_sequence("AC-GT", DNA)
        assert encoded.length == 5
        assert encoded.effective_length == 4
        assert encoded.skip.tolist() == [False, False, True, False, False]
        assert encoded.codes[2] == -2

    def test_ambiguous_positions(self):
        """Test that ambiguity codes are encoded as fractional weights."""
        encoded = encode_sequence("AN", DNA)
        assert encoded.codes.tolist() == [0, -1]
        assert encoded.weights[1].tolist() == [0.25, 0.25, 0.25, 0.25]

    def test_unknown_symbol_reports_position(self):
        """Test that unknown symbols raise InputError naming the 1-based position."""
        with pytest.raises(InputError, match="position 3"):
            encode_sequence("AC!T", DNA)

    def test_empty_sequence(self):
        """Test that the empty sequence encodes to zero positions."""
        encoded = encode_sequence("", DNA)
        assert encoded.length == 0
        assert encoded.effective_length == 0

    def test_encoded_arrays_are_read_only(self):
        """Test that encoded weights cannot be modified in place."""
        encoded = encode_sequence("ACGT", DNA)
        with pytest.raises(ValueError):
            encoded.weights[0, 0] = 0.0
