import io

import pytest

from factormap.data.indexers import EntityMapping
from factormap.data.relations import (
    RelationFormatError,
    SparseBinaryRelation,
    read_attributes,
    read_relation,
    read_relation_file,
)


def test_read_relation_maps_ids_in_first_seen_order():
    mapping = EntityMapping()
    relation = read_relation(io.StringIO("100 200\n200\t300\n100 300\n"), mapping)

    assert mapping.index_to_id == [100, 200, 300]
    assert relation[0, 1]
    assert relation[1, 2]
    assert relation[0, 2]
    assert relation.nnz == 3
    assert relation.num_entities == 3


def test_read_relation_is_directional():
    mapping = EntityMapping()
    relation = read_relation(io.StringIO("1 2\n"), mapping)

    assert relation[0, 1]
    assert not relation[1, 0]


def test_blank_lines_do_not_change_entity_count():
    mapping = EntityMapping()
    relation = read_relation(io.StringIO("\n1 2\n   \n\t\n2 3\n\n"), mapping)

    assert len(mapping) == 3
    assert relation.num_entities == 3
    assert sorted(relation.pairs()) == [(0, 1), (1, 2)]


@pytest.mark.parametrize("line", ["5", "5 6 7", "5 6 7 8"])
def test_wrong_token_count_is_fatal(line):
    mapping = EntityMapping()
    text = f"1 2\n{line}\n3 4\n"

    with pytest.raises(RelationFormatError) as excinfo:
        read_relation(io.StringIO(text), mapping)

    assert "line 2" in str(excinfo.value)
    # Nothing from the malformed line reached the mapping.
    assert mapping.index_to_id == [1, 2]


def test_non_integer_token_is_fatal():
    mapping = EntityMapping()
    with pytest.raises(RelationFormatError):
        read_relation(io.StringIO("1 abc\n"), mapping)
    assert len(mapping) == 0


def test_rows_and_transpose():
    relation = SparseBinaryRelation()
    relation[0, 3] = True
    relation[0, 1] = True
    relation[2, 1] = True

    assert relation.row(0) == frozenset({1, 3})
    assert relation.row(1) == frozenset()
    assert relation.row(99) == frozenset()
    assert relation.num_rows == 3
    assert relation.num_columns == 4

    transposed = relation.transpose()
    assert transposed.row(1) == frozenset({0, 2})
    assert transposed[3, 0]


def test_setting_false_removes_entry():
    relation = SparseBinaryRelation()
    relation[1, 1] = True
    relation[1, 1] = False

    assert not relation[1, 1]
    assert relation.nnz == 0


def test_to_csr_matches_entries():
    relation = SparseBinaryRelation()
    relation[0, 2] = True
    relation[1, 0] = True

    matrix = relation.to_csr()
    assert matrix.shape == (2, 3)
    assert matrix.toarray().tolist() == [[0.0, 0.0, 1.0], [1.0, 0.0, 0.0]]


def test_read_attributes_keeps_raw_attribute_indices():
    mapping = EntityMapping()
    relation, num_attributes = read_attributes(io.StringIO("50 0\n50 4\n60 2\n"), mapping)

    assert mapping.index_to_id == [50, 60]
    assert relation.row(0) == frozenset({0, 4})
    assert relation.row(1) == frozenset({2})
    assert num_attributes == 5


def test_read_relation_file_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_relation_file(tmp_path / "missing.txt", EntityMapping())


def test_read_relation_file(tmp_path):
    path = tmp_path / "trust.txt"
    path.write_text("7 8\n8 7\n", encoding="utf-8")

    relation = read_relation_file(path, EntityMapping())
    assert relation[0, 1] and relation[1, 0]
