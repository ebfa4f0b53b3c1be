"""
Tests for threshold-based OTU assignment.
"""

import pytest
import numpy as np

from kmerclust.counting import count_sequences
from kmerclust.distances import full_distance_matrix
from kmerclust.errors import ConfigurationError, NumericGuardError
from kmerclust.otu import OTUAssignment, OTUClustering


TWO_GROUPS = [
    "AAAAAAAAAA",
    "TTTTTTTTTT",
    "AAAAAAAAAT",
    "TTTTTTTTTA",
    "AAAAAAAATA",
    "TTTTTTTTAT",
    "AAAAAAATAA",
    "TTTTTTTATT",
]


class TestOTUClustering:
    """Test suite for OTUClustering."""

    def setup_method(self):
        """Set up test fixtures."""
        self.counts = count_sequences(TWO_GROUPS, 2, labels=[f"s{i}" for i in range(8)],
                                      show_progress=False, num_threads=0)
        self.full = full_distance_matrix(self.counts, show_progress=False).values

    def test_two_otus(self):
        """Test that a loose threshold yields one OTU per group."""
        assignment = OTUClustering(0.5, nstart=5, num_threads=0, show_progress=False).build(self.counts)
        assert assignment.n_otus == 2
        assert assignment.cluster_ids == (1, 2, 1, 2, 1, 2, 1, 2)
        assert assignment.members(1) == [0, 2, 4, 6]

    def test_one_representative_per_otu(self):
        """Test that each OTU has exactly one representative among its members."""
        assignment = OTUClustering(0.5, nstart=5, num_threads=0, show_progress=False).build(self.counts)
        assert sum(assignment.is_representative) == assignment.n_otus
        for otu_id, members in assignment.otus().items():
            assert assignment.representative(otu_id) in members

    def test_threshold_respected(self):
        """Test that every OTU's maximum internal distance is within the threshold."""
        threshold = 0.08
        assignment = OTUClustering(threshold, nstart=5, num_threads=0, show_progress=False).build(self.counts)
        for otu_id, members in assignment.otus().items():
            block = self.full[np.ix_(members, members)]
            assert block.max() <= threshold
            assert assignment.max_distances[otu_id] == pytest.approx(block.max())

    def test_split_nodes_exceed_threshold(self):
        """Test that every node that was split had a maximum distance above the threshold."""
        threshold = 0.08
        assignment = OTUClustering(threshold, nstart=5, num_threads=0, show_progress=False).build(self.counts)
        for node in assignment.tree.nodes:
            if not node.is_leaf:
                members = list(node.members)
                assert self.full[np.ix_(members, members)].max() > threshold

    def test_tight_threshold_gives_singletons(self):
        """Test that a tiny threshold splits distinct sequences apart."""
        assignment = OTUClustering(1e-9, num_threads=0, show_progress=False).build(self.counts)
        assert assignment.n_otus == 8
        assert all(assignment.is_representative)

    def test_loose_threshold_gives_one_otu(self):
        """Test that a threshold above the maximum distance keeps everything together."""
        assignment = OTUClustering(2.0, num_threads=0, show_progress=False).build(self.counts)
        assert assignment.n_otus == 1
        assert assignment.tree.n_leaves == 1

    def test_identical_sequences_share_otu(self):
        """Test that duplicates always land in the same OTU."""
        counts = count_sequences(["ACGTACGT", "ACGTACGT", "TTTTTTTT"], 2, show_progress=False)
        assignment = OTUClustering(0.01, num_threads=0, show_progress=False).build(counts)
        assert assignment.cluster_ids[0] == assignment.cluster_ids[1]
        assert assignment.cluster_ids[2] != assignment.cluster_ids[0]

    def test_representative_method(self):
        """Test that 'longest' picks the longest member of each OTU."""
        counts = count_sequences(["AAAAAAAA", "AAAAAAAAAAAA", "AAAAAAAAAA"], 2, show_progress=False)
        assignment = OTUClustering(0.5, method="longest", num_threads=0, show_progress=False).build(counts)
        assert assignment.n_otus == 1
        assert assignment.representative(1) == 1

    def test_parallel_matches_sequential(self):
        """Test that multiprocess evaluation gives the same assignment."""
        sequential = OTUClustering(0.08, nstart=3, num_threads=0, show_progress=False).build(self.counts)
        parallel = OTUClustering(0.08, nstart=3, num_threads=2, show_progress=False).build(self.counts)
        assert sequential.cluster_ids == parallel.cluster_ids
        assert sequential.is_representative == parallel.is_representative

    def test_guard_failure_propagates(self):
        """Test that sequences too short for k abort OTU assignment."""
        counts = count_sequences(["A", "AAAA"], 2, show_progress=False)
        with pytest.raises(NumericGuardError):
            OTUClustering(0.5, num_threads=0, show_progress=False).build(counts)

    def test_invalid_threshold(self):
        """Test threshold validation."""
        for threshold in (0, -0.1, float('nan'), float('inf'), "0.1", True):
            with pytest.raises(ConfigurationError):
                OTUClustering(threshold)

    def test_invalid_method(self):
        """Test representative method validation."""
        with pytest.raises(ConfigurationError):
            OTUClustering(0.1, method="medoid")


class TestOTUAssignment:
    """Test suite for the OTUAssignment container."""

    def setup_method(self):
        """Set up test fixtures."""
        self.assignment = OTUAssignment(
            cluster_ids=(1, 1, 2),
            is_representative=(False, True, True),
            labels=("a", "b", "c"),
            max_distances={1: 0.1, 2: 0.0},
        )

    def test_accessors(self):
        """Test OTU membership helpers."""
        assert self.assignment.n_otus == 2
        assert self.assignment.otus() == {1: [0, 1], 2: [2]}
        assert self.assignment.representative(1) == 1
        assert self.assignment.members(2) == [2]

    def test_records(self):
        """Test per-sequence records in input order."""
        assert self.assignment.to_records() == [("a", 1, False), ("b", 1, True), ("c", 2, True)]

    def test_to_dict(self):
        """Test dictionary export."""
        data = self.assignment.to_dict()
        assert data['otus']['1']['representative'] == "b"
        assert data['otus']['1']['members'] == ["a", "b"]
        assert data['tree'] is None

    def test_requires_one_representative(self):
        """Test that construction rejects OTUs without exactly one representative."""
        with pytest.raises(ValueError):
            OTUAssignment(cluster_ids=(1, 1), is_representative=(True, True), labels=("a", "b"))
        with pytest.raises(ValueError):
            OTUAssignment(cluster_ids=(1, 2), is_representative=(True, False), labels=("a", "b"))

    def test_length_mismatch(self):
        """Test that all per-sequence fields must have the same length."""
        with pytest.raises(ValueError):
            OTUAssignment(cluster_ids=(1,), is_representative=(True, False), labels=("a", "b"))
