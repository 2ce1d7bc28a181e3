import json
import threading

import pytest

from caselink.checkpoint import JsonCheckpointStore, MemoryCheckpointStore
from caselink.config import RepairConfig
from caselink.driver import DONE, BatchDriver
from caselink.gatherers import Gatherer, attach_video
from caselink.models import Candidate, Checkpoint, Outcome, RecordResult
from caselink.processors import LinkAuditProcessor, LinkRepairProcessor, RecordProcessor
from caselink.urls import oembed_url
from caselink.validation import Validator


class RecordingProcessor(RecordProcessor):
    command = "record"

    def __init__(self, config, outcome_for=None) -> None:
        super().__init__(config, validator=None)
        self.outcome_for = outcome_for or (lambda record: Outcome.KEPT)
        self.seen = []
        self._lock = threading.Lock()

    def process(self, record):
        with self._lock:
            self.seen.append(record.id)
        outcome = self.outcome_for(record)
        if outcome == "boom":
            raise RuntimeError("unexpected")
        return RecordResult(outcome)


def _write_dataset(path, count: int = 10, **fields) -> None:
    rows = [{"id": f"c{n}", "title": f"Campaign {n}", "year": 2010 + n, **fields} for n in range(count)]
    path.write_text(json.dumps(rows, indent=2), encoding="utf-8")


def test_resume_processes_each_record_exactly_once(tmp_path, quiet_logger) -> None:
    dataset = tmp_path / "campaigns.json"
    _write_dataset(dataset)
    store = JsonCheckpointStore(tmp_path / "campaigns.record.progress.json")
    config = RepairConfig(max_items=5, concurrency=3, save_every=2)

    first = RecordingProcessor(config)
    report = BatchDriver(dataset, first, store, config, quiet_logger).run()
    assert sorted(first.seen) == [f"c{n}" for n in range(5)]
    assert (report.start_index, report.end_index) == (0, 5)
    assert store.load().next_index == 5

    second = RecordingProcessor(config)
    report = BatchDriver(dataset, second, store, config, quiet_logger).run()
    assert sorted(second.seen) == [f"c{n}" for n in range(5, 10)]
    assert (report.start_index, report.end_index) == (5, 10)
    # A completed pass resets progress.
    assert store.load() is None


def test_force_restart_and_no_resume_ignore_checkpoint(tmp_path, quiet_logger) -> None:
    dataset = tmp_path / "campaigns.json"
    _write_dataset(dataset)
    store = MemoryCheckpointStore(Checkpoint(next_index=7))

    config = RepairConfig(max_items=3, resume=False)
    proc = RecordingProcessor(config)
    BatchDriver(dataset, proc, store, config, quiet_logger).run()
    assert sorted(proc.seen) == ["c0", "c1", "c2"]

    config = RepairConfig(max_items=2, force_restart=True, start_index=4)
    proc = RecordingProcessor(config)
    BatchDriver(dataset, proc, store, config, quiet_logger).run()
    assert sorted(proc.seen) == ["c4", "c5"]
    assert store.load().next_index == 6


def test_outcome_accounting_closes(tmp_path, quiet_logger) -> None:
    dataset = tmp_path / "campaigns.json"
    _write_dataset(dataset, count=12)
    outcomes = [
        Outcome.REPLACED,
        Outcome.NO_CANDIDATES,
        Outcome.LOW_SCORE,
        Outcome.UNAVAILABLE,
        Outcome.REJECTED,
        "boom",
    ]
    config = RepairConfig(concurrency=4, start_year=2012)
    proc = RecordingProcessor(config, outcome_for=lambda r: outcomes[int(r.id[1:]) % len(outcomes)])
    report = BatchDriver(dataset, proc, MemoryCheckpointStore(), config, quiet_logger).run()
    assert report.checked == 12
    assert report.checked == sum(report.counts.values())
    assert report.counts[Outcome.SKIPPED] == 2
    assert report.counts[Outcome.ERROR] == 2
    assert report.targets == 10
    payload = report.to_dict()
    assert payload["checked"] == sum(payload[key] for key in
        ("replaced", "kept", "noCandidates", "lowScore", "unavailable", "rejected", "skipped", "error"))


def test_checkpoint_cadence_and_record_count(tmp_path, quiet_logger) -> None:
    dataset = tmp_path / "campaigns.json"
    _write_dataset(dataset, count=10)
    store = MemoryCheckpointStore()
    config = RepairConfig(max_items=5, concurrency=1, save_every=2)
    BatchDriver(dataset, RecordingProcessor(config), store, config, quiet_logger).run()
    # Two periodic saves plus the final one.
    assert store.saves == 3
    assert store.load().checked == 5
    assert len(json.loads(dataset.read_text(encoding="utf-8"))) == 10


def test_stop_request_persists_low_water_mark(tmp_path, quiet_logger) -> None:
    dataset = tmp_path / "campaigns.json"
    _write_dataset(dataset)
    store = MemoryCheckpointStore()
    config = RepairConfig(concurrency=1)
    holder = {}

    def outcome_for(record):
        if record.id == "c1":
            holder["driver"].request_stop()
        return Outcome.KEPT

    driver = BatchDriver(dataset, RecordingProcessor(config, outcome_for), store, config, quiet_logger)
    holder["driver"] = driver
    report = driver.run()
    assert report.interrupted is True
    assert report.checked == 2
    assert store.load().next_index == 2
    assert driver.state == DONE


def test_persistence_failure_is_fatal(tmp_path, quiet_logger) -> None:
    dataset = tmp_path / "campaigns.json"
    _write_dataset(dataset, count=4)

    class BrokenStore(MemoryCheckpointStore):
        def save(self, checkpoint):
            raise OSError("disk full")

    config = RepairConfig(save_every=1, concurrency=2)
    with pytest.raises(OSError):
        BatchDriver(dataset, RecordingProcessor(config), BrokenStore(), config, quiet_logger).run()


class OneCandidate(Gatherer):
    name = "one"

    def __init__(self, candidate) -> None:
        super().__init__()
        self.candidate = candidate

    def _gather(self, record):
        return [Candidate(**vars(self.candidate))]


def _partners_dataset(path) -> None:
    rows = [
        {
            "id": "extra-gum-partners",
            "title": "Partners",
            "brand": "Extra Gum",
            "year": 2015,
            "outboundUrl": "https://dead.example/x",
            "thumbnailUrl": "",
            "topics": ["Storytelling"],
        }
    ]
    path.write_text(json.dumps(rows), encoding="utf-8")


def test_dead_link_is_replaced_end_to_end(tmp_path, fake_http, quiet_logger) -> None:
    dataset = tmp_path / "campaigns.json"
    _partners_dataset(dataset)
    cand = attach_video(
        Candidate(url="https://www.youtube.com/watch?v=abc12345678", title="Extra Gum 'Partners' 2015 commercial", source="video")
    )
    fake_http.add("https://www.youtube.com/watch?v=abc12345678")
    fake_http.add(oembed_url("abc12345678"), content_type="application/json")
    config = RepairConfig()
    processor = LinkRepairProcessor(config, Validator(fake_http), [OneCandidate(cand)])
    report_path = tmp_path / "campaigns.repair-links.report.json"

    report = BatchDriver(dataset, processor, MemoryCheckpointStore(), config, quiet_logger, report_path).run()

    row = json.loads(dataset.read_text(encoding="utf-8"))[0]
    assert row["outboundUrl"] == "https://www.youtube.com/watch?v=abc12345678"
    assert row["thumbnailUrl"] == "https://i.ytimg.com/vi/abc12345678/hqdefault.jpg"
    assert row["topics"] == ["Storytelling"]
    assert report.counts[Outcome.REPLACED] == 1
    written = json.loads(report_path.read_text(encoding="utf-8"))
    assert written["replaced"] == 1
    assert written["bySource"] == {"video": 1}
    assert written["changed"][0]["oldUrl"] == "https://dead.example/x"
    assert written["changed"][0]["score"] >= 0.6


def test_garbage_candidate_leaves_dataset_unchanged(tmp_path, fake_http, quiet_logger) -> None:
    dataset = tmp_path / "campaigns.json"
    _partners_dataset(dataset)
    cand = attach_video(
        Candidate(url="https://www.youtube.com/watch?v=zzz12345678", title="Top 10 Funniest Super Bowl Fails Compilation 2015")
    )
    config = RepairConfig()
    processor = LinkRepairProcessor(config, Validator(fake_http), [OneCandidate(cand)])
    report = BatchDriver(dataset, processor, MemoryCheckpointStore(), config, quiet_logger).run()
    row = json.loads(dataset.read_text(encoding="utf-8"))[0]
    assert row["outboundUrl"] == "https://dead.example/x"
    assert report.counts[Outcome.LOW_SCORE] == 1


def test_audit_does_not_rewrite_dataset(tmp_path, fake_http, quiet_logger) -> None:
    dataset = tmp_path / "campaigns.json"
    _partners_dataset(dataset)
    before = dataset.read_text(encoding="utf-8")
    config = RepairConfig()
    processor = LinkAuditProcessor(config, Validator(fake_http))
    report = BatchDriver(dataset, processor, MemoryCheckpointStore(), config, quiet_logger).run()
    assert dataset.read_text(encoding="utf-8") == before
    assert report.dead == [
        {"id": "extra-gum-partners", "title": "Partners", "url": "https://dead.example/x", "reason": "status=404"}
    ]
