import json

import pytest

from caselink.checkpoint import JsonCheckpointStore, MemoryCheckpointStore
from caselink.dataset import load_dataset, save_dataset
from caselink.errors import CheckpointError, DatasetError
from caselink.models import Checkpoint


def test_json_checkpoint_store_round_trip(tmp_path) -> None:
    store = JsonCheckpointStore(tmp_path / "run.progress.json")
    assert store.load() is None
    store.save(Checkpoint(next_index=25, checked=25, counts={"replaced": 4}))
    raw = json.loads((tmp_path / "run.progress.json").read_text(encoding="utf-8"))
    assert raw["nextIndex"] == 25
    assert raw["replaced"] == 4
    assert raw["updatedAt"].endswith("Z")
    loaded = store.load()
    assert loaded.next_index == 25 and loaded.counts == {"replaced": 4}
    store.clear()
    store.clear()
    assert store.load() is None


def test_corrupt_checkpoint_is_fatal(tmp_path) -> None:
    path = tmp_path / "bad.progress.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(CheckpointError):
        JsonCheckpointStore(path).load()
    path.write_text("[]", encoding="utf-8")
    with pytest.raises(CheckpointError):
        JsonCheckpointStore(path).load()


def test_memory_checkpoint_store() -> None:
    store = MemoryCheckpointStore()
    store.save(Checkpoint(next_index=3))
    assert store.load().next_index == 3
    assert store.saves == 1
    store.clear()
    assert store.load() is None


def test_dataset_round_trip_is_pretty_utf8(tmp_path) -> None:
    path = tmp_path / "campaigns.json"
    path.write_text(json.dumps([{"id": "a", "title": "Café"}, {"id": "b"}]), encoding="utf-8")
    records = load_dataset(path)
    save_dataset(path, records)
    text = path.read_text(encoding="utf-8")
    assert "Café" in text
    assert text.startswith('[\n  {\n    "id": "a"')
    assert len(json.loads(text)) == 2
    assert not (tmp_path / "campaigns.json.tmp").exists()


@pytest.mark.parametrize(
    "content",
    ["", "{broken", '{"id": "a"}', '["x"]', '[{"title": "no id"}]', '[{"id": "a"}, {"id": "a"}]'],
)
def test_bad_datasets_are_fatal(tmp_path, content) -> None:
    path = tmp_path / "campaigns.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(DatasetError):
        load_dataset(path)


def test_missing_dataset_is_fatal(tmp_path) -> None:
    with pytest.raises(DatasetError):
        load_dataset(tmp_path / "missing.json")
