import numpy as np
import pytest

from factormap.data.relations import SparseBinaryRelation
from factormap.similarity import BinaryPearson, CorrelationMatrix, Cosine


def _relation(rows: dict[int, set[int]]) -> SparseBinaryRelation:
    relation = SparseBinaryRelation()
    for entity, attributes in rows.items():
        for attribute in attributes:
            relation[entity, attribute] = True
    return relation


def test_cosine_pairwise_values():
    assert Cosine.compute_correlation({1, 2, 3}, {1, 2, 3}) == pytest.approx(1.0)
    assert Cosine.compute_correlation({1, 2}, {3, 4}) == 0.0
    assert Cosine.compute_correlation({1, 2}, {2, 3, 4, 5}) == pytest.approx(1 / np.sqrt(8))


def test_cosine_matrix_symmetric_with_unit_diagonal():
    # Entity 2 has no attributes; entity 4 is never mentioned at all.
    sets = [{0, 1}, {1, 2, 3}, set(), {0, 1}, set()]
    matrix = Cosine(5)
    matrix.compute_correlations(sets)

    assert np.allclose(matrix.data, matrix.data.T)
    assert np.all(np.diag(matrix.data) == 1.0)
    assert matrix[0, 3] == pytest.approx(1.0)
    assert matrix[0, 1] == pytest.approx(1 / np.sqrt(6), rel=1e-6)
    # Pairs touching an empty entity are left at the default.
    assert matrix[0, 2] == 0.0
    assert matrix[2, 1] == 0.0
    assert matrix[4, 0] == 0.0


def test_cosine_disjoint_sets_score_zero():
    matrix = Cosine(2)
    matrix.compute_correlations([{0, 1}, {2, 3}])

    assert matrix[0, 1] == 0.0
    assert matrix[1, 0] == 0.0


def test_cosine_accepts_relation_input():
    relation = _relation({0: {0, 1}, 1: {1}, 3: {0}})
    matrix = Cosine(4)
    matrix.compute_correlations(relation)

    assert matrix[0, 1] == pytest.approx(1 / np.sqrt(2), rel=1e-6)
    assert matrix[2, 2] == 1.0
    assert matrix[0, 3] == pytest.approx(1 / np.sqrt(2), rel=1e-6)


def test_sparse_cosine_matches_pairwise_loop():
    rng = np.random.default_rng(7)
    rows = {
        entity: set(rng.choice(12, size=int(rng.integers(0, 5)), replace=False).tolist())
        for entity in range(15)
    }
    relation = _relation(rows)

    looped = Cosine(15)
    looped.compute_correlations(relation)
    vectorised = Cosine(15)
    vectorised.compute_correlations_sparse(relation)

    np.testing.assert_array_equal(looped.data, vectorised.data)


def test_nearest_neighbors_orders_by_similarity_then_index():
    matrix = Cosine(4)
    matrix.compute_correlations([{0, 1}, {0, 1}, {0, 2}, {0, 1}])

    assert matrix.nearest_neighbors(0, 2) == [1, 3]
    assert matrix.nearest_neighbors(0, 10) == [1, 3, 2]
    assert matrix.positively_correlated(2) == [0, 1, 3]


def test_binary_pearson():
    matrix = BinaryPearson(3, num_attributes=4)
    matrix.compute_correlations([{0, 1}, {0, 1}, {2, 3}])

    assert matrix[0, 1] == pytest.approx(1.0)
    assert matrix[0, 2] == pytest.approx(-1.0)
    assert matrix[1, 1] == 1.0


def test_binary_pearson_zero_variance():
    matrix = BinaryPearson(2, num_attributes=2)
    matrix.compute_correlations([{0, 1}, {0}])

    assert matrix[0, 1] == 0.0


def test_base_matrix_requires_a_similarity_function():
    with pytest.raises(TypeError):
        CorrelationMatrix(3)
