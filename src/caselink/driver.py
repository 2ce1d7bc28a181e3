"""Resumable batch driver.

One invocation walks ``[start, end)`` of the dataset with a fixed pool of
worker threads pulling indices from a shared cursor. Only the driver writes
the dataset and checkpoint, and only at checkpoint boundaries and at the end.

Two runs against the same dataset file are not coordinated; the last writer
wins. An ungraceful kill loses at most ``save_every * concurrency`` records of
work, which the next resumed run redoes. Records that finished above the saved
``nextIndex`` are already in the checkpoint counters, so redoing them after a
kill counts them twice; cumulative counters can overcount, per-run reports do not.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Dict, List, Optional, Set

from .checkpoint import CheckpointStore
from .config import RepairConfig
from .dataset import load_dataset, save_dataset, write_report
from .logger import RunLogger
from .models import OUTCOMES, CampaignRecord, Checkpoint, Outcome, RecordResult, RunReport, counter_key, utc_now_iso
from .processors import RecordProcessor

IDLE = "idle"
LOADING = "loading"
RUNNING = "running"
CHECKPOINTING = "checkpointing"
DONE = "done"

JOIN_POLL_SEC = 0.2


class BatchDriver:
    def __init__(
        self,
        dataset_path: Path,
        processor: RecordProcessor,
        store: CheckpointStore,
        config: RepairConfig,
        logger: RunLogger,
        report_path: Optional[Path] = None,
    ) -> None:
        self.dataset_path = Path(dataset_path)
        self.processor = processor
        self.store = store
        self.config = config
        self.logger = logger
        self.report_path = Path(report_path) if report_path else None
        self.state = IDLE
        self.records: List[CampaignRecord] = []
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._cursor = 0
        self._end = 0
        self._in_flight: Set[int] = set()
        self._processed = 0
        self._fatal: Optional[BaseException] = None
        self._base_checked = 0
        self._base_counts: Dict[str, int] = {}
        self.report = RunReport(command=processor.command)

    def request_stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def next_index(self) -> int:
        """Lowest index not yet finished; every worker has passed it."""
        return min(self._in_flight) if self._in_flight else self._cursor

    def _load(self) -> None:
        self.state = LOADING
        self.records = load_dataset(self.dataset_path)
        total = len(self.records)
        checkpoint: Optional[Checkpoint] = None
        if self.config.force_restart:
            self.store.clear()
        elif self.config.resume:
            checkpoint = self.store.load()
        if checkpoint is not None:
            start = checkpoint.next_index
            self._base_checked = checkpoint.checked
            self._base_counts = dict(checkpoint.counts)
            self.logger.log(f"[resume] {self.processor.command} from index {start} (checked={checkpoint.checked})")
        else:
            start = self.config.start_index
        start = min(max(start, 0), total)
        self._cursor = start
        self._end = min(total, start + self.config.max_items)
        self.report.start_index = start
        self.report.end_index = self._end
        self.report.min_score = self.config.min_score
        self.logger.log(f"[load] {total} records from {self.dataset_path}; range [{start}, {self._end})")

    def _claim(self) -> Optional[int]:
        with self._lock:
            if self._stop.is_set() or self._fatal is not None or self._cursor >= self._end:
                return None
            idx = self._cursor
            self._cursor += 1
            self._in_flight.add(idx)
            return idx

    def _process_one(self, record: CampaignRecord) -> RecordResult:
        if not self.processor.wants(record):
            return RecordResult(Outcome.SKIPPED)
        try:
            return self.processor.process(record)
        except Exception as exc:
            self.logger.log(f"[error] {record.id}: {type(exc).__name__}: {exc}")
            return RecordResult(Outcome.ERROR, note=f"{type(exc).__name__}: {exc}")

    def _tally(self, record: CampaignRecord, result: RecordResult) -> None:
        report = self.report
        report.checked += 1
        report.counts[result.outcome] = report.counts.get(result.outcome, 0) + 1
        if result.outcome != Outcome.SKIPPED:
            report.targets += 1
        if result.outcome == Outcome.REPLACED:
            if result.source:
                report.by_source[result.source] = report.by_source.get(result.source, 0) + 1
            report.changed.append(
                {
                    "id": record.id,
                    "title": record.title,
                    "oldUrl": result.old_url,
                    "newUrl": result.new_url,
                    "source": result.source,
                    "score": round(result.score, 4) if result.score is not None else None,
                }
            )
        elif result.outcome == Outcome.UNAVAILABLE and not self.processor.mutates:
            report.dead.append({"id": record.id, "title": record.title, "url": result.old_url, "reason": result.note})

    def _finish(self, idx: int, result: RecordResult) -> None:
        record = self.records[idx]
        with self._lock:
            for key, value in result.changes.items():
                record.set(key, value)
            self._in_flight.discard(idx)
            self._tally(record, result)
            self._processed += 1
            if self._processed % self.config.progress_every == 0:
                self._log_progress()
            if self._processed % self.config.save_every == 0:
                self.state = CHECKPOINTING
                self._persist(self.next_index())
                self.state = RUNNING

    def _log_progress(self) -> None:
        counts = " ".join(
            f"{counter_key(outcome)}={self.report.counts[outcome]}"
            for outcome in OUTCOMES
            if self.report.counts.get(outcome)
        )
        span = self._end - self.report.start_index
        self.logger.log(f"[progress] {self._processed}/{span} next={self.next_index()} {counts}".rstrip())

    def _checkpoint(self, next_index: int) -> Checkpoint:
        counts = dict(self._base_counts)
        for outcome, value in self.report.counts.items():
            key = counter_key(outcome)
            counts[key] = counts.get(key, 0) + value
        return Checkpoint(
            next_index=next_index,
            checked=self._base_checked + self.report.checked,
            counts=counts,
            updated_at=utc_now_iso(),
        )

    def _persist(self, next_index: int) -> None:
        # Caller holds the lock, so no record changes mid-write.
        if self.processor.mutates:
            save_dataset(self.dataset_path, self.records)
        self.store.save(self._checkpoint(next_index))
        self.logger.debug(f"[checkpoint] nextIndex={next_index}")

    def _worker(self) -> None:
        while True:
            idx = self._claim()
            if idx is None:
                return
            result = self._process_one(self.records[idx])
            try:
                self._finish(idx, result)
            except Exception as exc:
                # Persistence failures end the run; the main thread re-raises.
                with self._lock:
                    self._fatal = exc
                self._stop.set()
                return

    def run(self) -> RunReport:
        self._load()
        self.state = RUNNING
        workers = [
            threading.Thread(target=self._worker, name=f"caselink-worker-{n}", daemon=True)
            for n in range(max(1, min(self.config.concurrency, self._end - self._cursor)))
        ]
        for worker in workers:
            worker.start()
        # Join with a timeout so the main thread stays responsive to signals.
        for worker in workers:
            while worker.is_alive():
                worker.join(JOIN_POLL_SEC)
        if self._fatal is not None:
            raise self._fatal

        with self._lock:
            next_index = self.next_index()
            self.report.interrupted = self.stopped and next_index < self._end
            self._persist(next_index)
            if not self.report.interrupted and next_index >= len(self.records):
                self.store.clear()
                self.logger.log("[done] reached end of dataset; checkpoint cleared")
        self.report.end_index = next_index
        self.report.generated_at = utc_now_iso()
        if self.report_path:
            write_report(self.report_path, self.report)
        self.state = DONE
        summary = self.report.to_dict()
        summary["changed"] = len(self.report.changed)
        if self.report.dead:
            summary["dead"] = len(self.report.dead)
        self.logger.summary(summary)
        return self.report
