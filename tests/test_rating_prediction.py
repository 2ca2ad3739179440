import json

import numpy as np
import pytest

from factormap.pipelines import TrainingState, run_rating_prediction

TRAIN = """\
1 10 5
1 11 3
1 12 4
2 10 4
2 13 2
3 11 5
3 12 1
4 10 3
4 13 5
"""

TEST = """\
1 13 2
2 11 4
3 10 3
9 10 4
"""

ATTRIBUTES = """\
10 0
10 2
11 1
12 0
12 1
13 2
"""


def _config(tmp_path, **overrides):
    (tmp_path / "ratings.train").write_text(TRAIN, encoding="utf-8")
    (tmp_path / "ratings.test").write_text(TEST, encoding="utf-8")
    (tmp_path / "attributes.txt").write_text(ATTRIBUTES, encoding="utf-8")
    config = {
        "experiment": {"seed": 7},
        "data": {
            "root": str(tmp_path),
            "training_file": "ratings.train",
            "test_file": "ratings.test",
            "item_attributes": "attributes.txt",
        },
        "model": {"num_factors": 3, "num_iter": 2, "batch_size": 4, "learn_rate": 0.05},
        "iteration": {
            "find_iter": 2,
            "max_iter": 6,
            "save_model": str(tmp_path / "checkpoints" / "mf.pt"),
        },
        "mapping": {"num_init_mapping": 2, "num_iter_mapping": 2},
        "similarity": {"method": "cosine", "output": str(tmp_path / "similarity.npy")},
        "evaluation": {"k_values": [1, 2]},
        "report": {
            "metric_plot": str(tmp_path / "metrics.png"),
            "summary": str(tmp_path / "summary.json"),
        },
    }
    config.update(overrides)
    return config


def test_run_rating_prediction_end_to_end(tmp_path):
    result = run_rating_prediction(_config(tmp_path))

    assert result.state is TrainingState.MAX_ITER_REACHED
    assert result.iterations == 6
    assert result.history.iterations == [4, 6]
    assert set(result.metrics) == {"RMSE", "MAE"}
    assert (tmp_path / "checkpoints" / "mf.pt-it-4").exists()
    assert (tmp_path / "checkpoints" / "mf.pt").exists()

    # Test-only user 9 is not part of the trained matrices.
    assert result.model.num_users == 4
    assert result.model.num_items == 4

    similarity = np.load(result.similarity_path)
    assert similarity.shape == (4, 4)
    np.testing.assert_allclose(np.diag(similarity), 1.0)
    np.testing.assert_allclose(similarity, similarity.T)

    assert result.mapping is not None
    assert result.mapping.weights.shape == (4, 3)
    assert result.mapping_metrics is not None
    assert set(result.mapping_metrics.recall) == {1, 2}

    assert result.metric_plot_path.exists()
    summary = json.loads((tmp_path / "summary.json").read_text(encoding="utf-8"))
    assert summary["state"] == "max_iter_reached"
    assert [entry["iteration"] for entry in summary["evaluations"]] == [4, 6]
    assert "mapping" in summary


def test_run_rating_prediction_single_pass_without_extras(tmp_path):
    config = _config(
        tmp_path,
        iteration={"find_iter": 0},
        mapping=None,
        similarity=None,
        report=None,
    )

    result = run_rating_prediction(config)

    assert result.state is TrainingState.COMPLETED
    assert result.iterations == 2
    assert result.mapping is None
    assert result.similarity_path is None
    assert result.metric_plot_path is None


def test_run_rating_prediction_requires_rating_files(tmp_path):
    config = _config(tmp_path)
    config["data"] = {"root": str(tmp_path), "training_file": "ratings.train"}

    with pytest.raises(ValueError, match="test_file"):
        run_rating_prediction(config)


def test_run_rating_prediction_keeps_user_relation(tmp_path):
    config = _config(tmp_path, mapping=None, similarity=None, report=None)
    (tmp_path / "trust.txt").write_text("1 2\n3 1\n", encoding="utf-8")
    config["data"]["user_relation"] = "trust.txt"

    result = run_rating_prediction(config)

    relation = result.user_relation
    assert relation is not None
    # Users 1, 2, 3 map to internal indices 0, 1, 2 from the training file.
    assert list(relation.pairs()) == [(0, 1), (2, 0)]
    assert relation[0, 1] and not relation[1, 0]
    assert result.model.num_users == 4
