"""
Tests for seed selection, embedding and representative selection.
"""

import pytest
import numpy as np

from kmerclust.counting import count_sequences
from kmerclust.distances import full_distance_matrix
from kmerclust.embedding import default_seed_count, mbed, resolve_seeds, select_seeds
from kmerclust.errors import ConfigurationError, InputError
from kmerclust.representatives import REPRESENTATIVE_METHODS, select_representative


TWO_GROUPS = [
    "AAAAAAAAAA",
    "AAAAAAAAAT",
    "AAAAAAAATA",
    "AAAAAAATAA",
    "TTTTTTTTTT",
    "TTTTTTTTTA",
    "TTTTTTTTAT",
    "TTTTTTTATT",
]


class TestDefaultSeedCount:
    """Test suite for the automatic seed count."""

    def test_small_collections(self):
        """Test that the seed count never exceeds n or drops below 1."""
        assert default_seed_count(1) == 1
        assert default_seed_count(2) == 1
        assert default_seed_count(8) == 8

    def test_larger_collections(self):
        """Test ceil((log2 n)^2) for larger n."""
        assert default_seed_count(100) == 45
        assert default_seed_count(1024) == 100

    def test_empty(self):
        """Test that zero sequences is an error."""
        with pytest.raises(ConfigurationError):
            default_seed_count(0)


class TestSeedSelection:
    """Test suite for automatic seed selection and embedding."""

    def setup_method(self):
        """Set up test fixtures."""
        self.counts = count_sequences(TWO_GROUPS, 2, labels=[f"s{i}" for i in range(8)],
                                      show_progress=False, num_threads=0)

    def test_one_seed_per_group(self):
        """Test that two seeds are drawn from the two groups."""
        seeds = select_seeds(self.counts, n_seeds=2, nstart=5)
        assert len(seeds) == 2
        assert seeds == sorted(seeds)
        assert seeds[0] < 4 <= seeds[1]

    def test_seed_selection_reproducible(self):
        """Test that seed selection is deterministic for a fixed rng_seed."""
        assert select_seeds(self.counts, n_seeds=3, rng_seed=5) == select_seeds(self.counts, n_seeds=3, rng_seed=5)

    def test_all_sequences_as_seeds(self):
        """Test that asking for n seeds returns every index."""
        assert select_seeds(self.counts, n_seeds=8) == list(range(8))

    def test_seed_count_clamped_to_distinct_vectors(self, caplog):
        """Test that duplicate count vectors reduce the number of seeds."""
        counts = count_sequences(["ACGT", "ACGT", "ACGT", "TTTT"], 2, show_progress=False)
        seeds = select_seeds(counts, n_seeds=3)
        assert len(seeds) == 2
        assert "distinct" in caplog.text

    def test_invalid_seed_count(self):
        """Test that the requested seed count is validated."""
        with pytest.raises(ConfigurationError):
            select_seeds(self.counts, n_seeds=0)
        with pytest.raises(ConfigurationError):
            select_seeds(self.counts, n_seeds=9)

    def test_mbed_with_explicit_labels(self):
        """Test embedding against seeds given by identifier."""
        embedded = mbed(self.counts, seeds=["s0", "s4"])
        full = full_distance_matrix(self.counts, show_progress=False)
        assert embedded.shape == (8, 2)
        assert embedded.seeds == (0, 4)
        np.testing.assert_allclose(embedded.values, full.values[:, [0, 4]])

    def test_mbed_automatic(self):
        """Test embedding with automatically selected seeds."""
        embedded = mbed(self.counts, n_seeds=2, nstart=5)
        assert embedded.shape == (8, 2)
        assert embedded.mode == "embedded"

    def test_resolve_seeds(self):
        """Test resolving a mix of indices and identifiers."""
        assert resolve_seeds(self.counts, [3, "s1"]) == [3, 1]
        with pytest.raises(ConfigurationError):
            resolve_seeds(self.counts, [1, 1])
        with pytest.raises(ConfigurationError):
            resolve_seeds(self.counts, [])
        with pytest.raises(ConfigurationError):
            resolve_seeds(self.counts, [20])
        with pytest.raises(InputError):
            resolve_seeds(self.counts, ["unknown"])


class TestRepresentatives:
    """Test suite for representative selection."""

    def setup_method(self):
        """Set up test fixtures."""
        self.sequences = ["AAAAAAAA", "AAAAAAAT", "AAAATAAA", "AAAAAAAAAAAA"]
        self.counts = count_sequences(self.sequences, 2, show_progress=False)

    def test_methods_listed(self):
        """Test the available representative policies."""
        assert REPRESENTATIVE_METHODS == ("central", "centroid", "farthest", "longest")

    def test_singleton(self):
        """Test that a single member represents itself."""
        for method in REPRESENTATIVE_METHODS:
            assert select_representative([2], self.counts, method) == 2

    def test_longest(self):
        """Test that 'longest' picks the sequence with the largest effective length."""
        assert select_representative([0, 1, 2, 3], self.counts, "longest") == 3

    def test_central_and_farthest(self):
        """Test that central minimises and farthest maximises mean distance."""
        full = full_distance_matrix(self.counts, show_progress=False).values
        members = [0, 1, 2, 3]
        means = full[np.ix_(members, members)].sum(axis=1) / 3
        assert select_representative(members, self.counts, "central") == int(np.argmin(means))
        assert select_representative(members, self.counts, "farthest") == int(np.argmax(means))

    def test_ties_go_to_lowest_index(self):
        """Test that identical members resolve to the lowest index."""
        counts = count_sequences(["ACGT", "ACGT", "ACGT"], 2, show_progress=False)
        for method in REPRESENTATIVE_METHODS:
            assert select_representative([2, 0, 1], counts, method) == 0

    def test_unknown_method(self):
        """Test that unknown policies are rejected."""
        with pytest.raises(ConfigurationError):
            select_representative([0, 1], self.counts, "medoid")

    def test_empty_group(self):
        """Test that an empty group is rejected."""
        with pytest.raises(InputError):
            select_representative([], self.counts)
