import io

import numpy as np
import pytest

from factormap.data.indexers import EntityMapping
from factormap.data.ratings import RatingData, read_ratings, read_ratings_file


def test_read_ratings_accepts_mixed_separators():
    users, items = EntityMapping(), EntityMapping()
    ratings = read_ratings(io.StringIO("10 100 4\n\n11\t100\t3.5\n10,200,1\n"), users, items)

    assert len(ratings) == 3
    assert ratings.users.tolist() == [0, 1, 0]
    assert ratings.items.tolist() == [0, 0, 1]
    assert ratings.values.tolist() == pytest.approx([4.0, 3.5, 1.0])
    assert users.index_to_id == [10, 11]
    assert items.index_to_id == [100, 200]


def test_read_ratings_empty_stream():
    ratings = read_ratings(io.StringIO("\n  \n"), EntityMapping(), EntityMapping())

    assert len(ratings) == 0
    assert ratings.num_users == 0


def test_read_ratings_requires_three_columns():
    with pytest.raises(ValueError):
        read_ratings(io.StringIO("1 2\n3 4\n"), EntityMapping(), EntityMapping())


@pytest.mark.parametrize(
    "text, line_number",
    [
        ("1 2 3\n4 5\n", 2),
        ("1 2 3\n\n7 8 4\n4 5\n", 4),
    ],
)
def test_read_ratings_rejects_short_line_after_full_line(text, line_number):
    users, items = EntityMapping(), EntityMapping()

    with pytest.raises(ValueError, match=f"line {line_number}"):
        read_ratings(io.StringIO(text), users, items)

    assert len(users) == 0
    assert len(items) == 0


def test_item_user_counts_and_grouping():
    ratings = RatingData(
        users=np.array([0, 0, 1, 1, 1]),
        items=np.array([0, 2, 0, 0, 1]),
        values=np.array([5.0, 3.0, 4.0, 4.0, 1.0]),
    )

    # Duplicate (user, item) pairs count once.
    assert ratings.item_user_counts(4).tolist() == [2, 1, 1, 0]
    assert ratings.items_by_user() == {0: {0, 2}, 1: {0, 1}}
    assert ratings.mean == pytest.approx(3.4)


def test_describe_reports_sparsity():
    ratings = RatingData(
        users=np.array([0, 1]),
        items=np.array([0, 1]),
        values=np.array([1.0, 2.0]),
    )

    stats = ratings.describe()
    assert stats["users"] == 2
    assert stats["items"] == 2
    assert stats["sparsity"] == pytest.approx(50.0)


def test_read_ratings_file_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_ratings_file(tmp_path / "nope.txt", EntityMapping(), EntityMapping())
