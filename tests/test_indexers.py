import pytest

from factormap.data.indexers import EntityMapping, build_index_mapping


def test_build_index_mapping_preserves_order():
    mapping = build_index_mapping([10, 7, 10, 3])

    assert isinstance(mapping, EntityMapping)
    assert mapping.index_to_id == [10, 7, 3]
    assert mapping.id_to_index == {10: 0, 7: 1, 3: 2}
    assert mapping.lookup(7) == 1
    assert mapping.to_external_id(2) == 3


def test_to_internal_id_allocates_once():
    mapping = EntityMapping()

    assert mapping.to_internal_id(42) == 0
    assert mapping.to_internal_id(5) == 1
    assert mapping.to_internal_id(42) == 0
    assert len(mapping) == 2
    assert 5 in mapping


def test_lookup_does_not_allocate():
    mapping = build_index_mapping(["x"])

    with pytest.raises(KeyError):
        mapping.lookup("y")
    assert len(mapping) == 1


def test_to_external_id_out_of_range():
    mapping = build_index_mapping([1, 2])

    with pytest.raises(IndexError):
        mapping.to_external_id(2)
    with pytest.raises(IndexError):
        mapping.to_external_id(-1)
