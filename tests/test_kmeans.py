"""
Tests for weighted k-means partitioning.
"""

import pytest
import numpy as np

from kmerclust.errors import ConfigurationError, ConvergenceError, InputError
from kmerclust.kmeans import KMeansPartitioner, KMeansResult, kmeans_partition


class TestKMeansPartitioner:
    """Test suite for KMeansPartitioner."""

    def setup_method(self):
        """Set up test fixtures."""
        self.features = np.array([
            [0.0, 0.0],
            [0.0, 1.0],
            [1.0, 0.0],
            [10.0, 10.0],
            [10.0, 11.0],
            [11.0, 10.0],
        ])

    def test_separates_obvious_groups(self):
        """Test that two well separated groups are recovered."""
        result = KMeansPartitioner(2, nstart=5).partition(self.features, rng_seed=1)
        assert isinstance(result, KMeansResult)
        groups = sorted(sorted(int(i) for i in g) for g in result.groups())
        assert groups == [[0, 1, 2], [3, 4, 5]]

    def test_objective(self):
        """Test that the objective is the weighted within-cluster sum of squares."""
        result = KMeansPartitioner(2, nstart=5).partition(self.features)
        # Each group of three has squared deviations summing to 4/3
        assert result.objective == pytest.approx(8 / 3)

    def test_reproducible(self):
        """Test that identical seeds give identical results."""
        a = kmeans_partition(self.features, 3, rng_seed=7, call_key=11)
        b = kmeans_partition(self.features, 3, rng_seed=7, call_key=11)
        np.testing.assert_array_equal(a.assignment, b.assignment)
        np.testing.assert_array_equal(a.centroids, b.centroids)
        assert a.restart == b.restart

    def test_weights_pull_centroid(self):
        """Test that item weights shift the weighted centroid."""
        features = np.array([[0.0], [1.0], [10.0]])
        result = kmeans_partition(features, 2, weights=np.array([1.0, 3.0, 1.0]))
        low = int(np.argmin(result.centroids[:, 0]))
        assert result.centroids[low, 0] == pytest.approx(0.75)

    def test_single_cluster(self):
        """Test k=1 puts every item in one group at the mean."""
        result = kmeans_partition(self.features, 1, nstart=1)
        assert set(result.assignment.tolist()) == {0}
        np.testing.assert_allclose(result.centroids[0], self.features.mean(axis=0))

    def test_too_few_distinct_items(self):
        """Test that k larger than the number of distinct items is a configuration error."""
        features = np.array([[1.0, 1.0], [1.0, 1.0], [2.0, 2.0]])
        with pytest.raises(ConfigurationError):
            kmeans_partition(features, 3)

    def test_empty_cluster_exhausts_retries(self):
        """Test that a metric that always empties a cluster raises ConvergenceError."""
        def lopsided(X, centroids):
            distances = np.ones((len(X), len(centroids)))
            distances[:, 0] = 0.0
            return distances

        partitioner = KMeansPartitioner(2, nstart=1, max_attempts=3, metric=lopsided)
        with pytest.raises(ConvergenceError):
            partitioner.partition(self.features)

    def test_empty_cluster_retried_then_succeeds(self):
        """Test that an attempt emptying a cluster is discarded and a later attempt is kept."""
        calls = []

        def empties_first_attempt(X, centroids):
            calls.append(len(calls))
            distances = np.sqrt(((X[:, None, :] - centroids[None, :, :]) ** 2).sum(axis=2))
            if len(calls) == 1:
                distances[:, 0] = 0.0
            return distances

        partitioner = KMeansPartitioner(2, nstart=1, max_attempts=3, metric=empties_first_attempt)
        result = partitioner.partition(self.features, rng_seed=3)
        assert len(calls) > 1
        assert result.restart == 0
        assert np.bincount(result.assignment, minlength=2).min() > 0
        groups = sorted(sorted(int(i) for i in g) for g in result.groups())
        assert groups == [[0, 1, 2], [3, 4, 5]]

    def test_callable_metric(self):
        """Test k-means with a caller-supplied distance function."""
        def manhattan(X, centroids):
            return np.abs(X[:, None, :] - centroids[None, :, :]).sum(axis=2)

        result = KMeansPartitioner(2, nstart=5, metric=manhattan).partition(self.features)
        groups = sorted(sorted(int(i) for i in g) for g in result.groups())
        assert groups == [[0, 1, 2], [3, 4, 5]]

    def test_invalid_parameters(self):
        """Test parameter validation."""
        for kwargs in ({'k': 0}, {'k': 2, 'nstart': 0}, {'k': 2, 'max_iter': 0},
                       {'k': 2, 'max_attempts': 0}, {'k': 2, 'metric': 'cosine'}):
            with pytest.raises(ConfigurationError):
                KMeansPartitioner(**kwargs)

    def test_invalid_weights(self):
        """Test that non-positive weights are rejected."""
        with pytest.raises(ConfigurationError):
            kmeans_partition(self.features, 2, weights=np.array([1, 1, 1, 1, 1, 0]))
        with pytest.raises(ConfigurationError):
            kmeans_partition(self.features, 2, weights=np.ones(3))

    def test_negative_seed(self):
        """Test that seeds must be non-negative."""
        with pytest.raises(ConfigurationError):
            kmeans_partition(self.features, 2, rng_seed=-1)

    def test_empty_features(self):
        """Test that an empty item set is rejected."""
        with pytest.raises(InputError):
            kmeans_partition(np.zeros((0, 2)), 1)
