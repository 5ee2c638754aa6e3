"""Tests for the pure clustering helpers (no database needed)."""
import numpy as np
import pytest

from app.config import WorkstreamConfig
from app.services.clustering import (
    ClusteringParams,
    calculate_centroid,
    cluster_embeddings,
    cosine_distance,
    cosine_distance_matrix,
    cosine_distances_between,
    find_optimal_epsilon,
    get_clustering_parameters,
)

from tests.conftest import group_vector, three_group_vectors

CONFIG = WorkstreamConfig()


def test_cosine_distance_identical_and_orthogonal():
    assert cosine_distance([1.0, 0.0], [2.0, 0.0]) == pytest.approx(0.0)
    assert cosine_distance([1.0, 0.0], [0.0, 3.0]) == pytest.approx(1.0)
    assert cosine_distance([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(2.0)


def test_cosine_distance_zero_vector_is_max():
    assert cosine_distance([0.0, 0.0], [1.0, 1.0]) == 2.0


def test_cosine_distance_length_mismatch_raises():
    with pytest.raises(ValueError):
        cosine_distance([1.0, 0.0], [1.0, 0.0, 0.0])


def test_calculate_centroid_is_mean():
    centroid = calculate_centroid([[1.0, 3.0], [3.0, 5.0]])
    assert centroid.tolist() == [2.0, 4.0]


def test_calculate_centroid_empty_raises():
    with pytest.raises(ValueError):
        calculate_centroid([])


def test_distance_matrix_is_symmetric_with_zero_diagonal():
    X = np.array([[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]])
    D = cosine_distance_matrix(X)
    assert np.allclose(D, D.T)
    assert np.allclose(np.diag(D), 0.0)
    assert D[0, 1] == pytest.approx(1.0)


def test_distances_between_marks_zero_rows_as_max():
    D = cosine_distances_between(np.array([[0.0, 0.0]]), np.array([[1.0, 0.0]]))
    assert D[0, 0] == 2.0


def test_clustering_parameters_by_size():
    assert get_clustering_parameters(19) is None
    assert get_clustering_parameters(20) == ClusteringParams(3, 3, 0.7)
    assert get_clustering_parameters(150) == ClusteringParams(3, 3, 0.75)
    assert get_clustering_parameters(300) == ClusteringParams(5, 5, 0.65)


def test_optimal_epsilon_defaults_for_tiny_input():
    D = cosine_distance_matrix(np.eye(3))
    assert find_optimal_epsilon(D, k=5) == 0.5


def test_optimal_epsilon_finds_elbow():
    # Two tight pairs far apart: k=1 distances jump from ~0 to ~1
    X = np.array([[1.0, 0.0], [1.0, 0.01], [0.0, 1.0], [0.01, 1.0], [-1.0, -1.0]])
    eps = find_optimal_epsilon(cosine_distance_matrix(X), k=1)
    assert eps > 0.1


def test_three_tight_groups_form_three_clusters():
    data = three_group_vectors()
    X = np.array(data["vectors"])
    result = cluster_embeddings(X, get_clustering_parameters(len(X)), CONFIG)

    assert len(result.clusters) == 3
    assert sorted(len(c) for c in result.clusters) == [6, 7, 7]
    assert result.outlier_count == 0
    assert result.epsilon >= CONFIG.min_epsilon
    # Each cluster holds exactly one group
    for members in result.clusters:
        groups = {0 if i < 6 else (1 if i < 13 else 2) for i in members}
        assert len(groups) == 1


def test_every_member_is_nearest_to_its_own_centroid():
    vectors = [group_vector(g, seed=100 + i, noise=0.01) for g in range(3) for i in range(8)]
    # A few points between groups
    vectors += [(np.array(group_vector(0, 900 + i)) + np.array(group_vector(1, 950 + i))).tolist()
                for i in range(3)]
    X = np.array(vectors)
    result = cluster_embeddings(X, get_clustering_parameters(len(X)), CONFIG)

    assert result.clusters
    C = np.array(result.centroids)
    D = cosine_distances_between(X, C)
    for i, label in enumerate(result.labels):
        if label >= 0:
            assert int(D[i].argmin()) == label


def test_all_outliers_reports_zero_clusters():
    data = three_group_vectors()
    X = np.array(data["vectors"])
    params = ClusteringParams(min_pts=3, min_cluster_size=25, outlier_threshold=0.7)
    result = cluster_embeddings(X, params, CONFIG)

    assert result.clusters == []
    assert result.outlier_count == len(X)
    assert all(label == -1 for label in result.labels)


def test_empty_input():
    result = cluster_embeddings(np.empty((0, 4)), ClusteringParams(3, 3, 0.7), CONFIG)
    assert result.clusters == []
    assert result.outlier_count == 0
