import json
import signal

import pytest

import caselink.cli as cli
from caselink.cli import EXIT_INTERRUPTED, build_parser, default_side_path, main
from caselink.models import Outcome, RecordResult
from caselink.processors import RecordProcessor


def _dataset(tmp_path):
    path = tmp_path / "campaigns.json"
    rows = [
        {"id": "a", "title": "Partners", "outboundUrl": "http://example.com/case#frag", "topics": ["X", "x"]},
        {"id": "b", "title": "Other", "thumbnailUrl": "https://dandad.org/images/social.jpg"},
    ]
    path.write_text(json.dumps(rows), encoding="utf-8")
    return path


def test_parser_subcommands() -> None:
    args = build_parser().parse_args(["repair-links", "data.json", "--concurrency", "4", "--no-resume"])
    assert args.command == "repair-links"
    assert args.concurrency == 4
    assert args.no_resume is True
    assert build_parser().parse_args(["audit-thumbnails", "data.json"]).command == "audit-thumbnails"
    with pytest.raises(SystemExit):
        build_parser().parse_args(["sanitize", "data.json", "--concurrency", "4"])


def test_default_side_paths(tmp_path) -> None:
    path = default_side_path(tmp_path / "campaigns.json", "repair-links", "progress")
    assert path == tmp_path / "campaigns.repair-links.progress.json"


def test_sanitize_command_rewrites_dataset(tmp_path, capsys) -> None:
    path = _dataset(tmp_path)
    report = tmp_path / "sanitize.json"
    assert main(["sanitize", str(path), "--report", str(report), "--verbosity", "quiet"]) == 0
    rows = json.loads(path.read_text(encoding="utf-8"))
    assert rows[0]["outboundUrl"] == "https://example.com/case"
    assert rows[0]["topics"] == ["X"]
    assert rows[1]["thumbnailUrl"] == ""
    assert json.loads(report.read_text(encoding="utf-8"))["thumbnailBlanked"] == 1


def test_config_error_exits_2(tmp_path, monkeypatch, capsys) -> None:
    monkeypatch.setenv("CONCURRENCY", "lots")
    assert main(["repair-links", str(_dataset(tmp_path))]) == 2
    assert "CONCURRENCY" in capsys.readouterr().err


def test_missing_dataset_exits_nonzero(tmp_path, monkeypatch, capsys) -> None:
    for name in ("CONCURRENCY", "MAX_ITEMS", "GATHERERS", "TARGET", "VERBOSITY"):
        monkeypatch.delenv(name, raising=False)
    assert main(["audit-links", str(tmp_path / "missing.json"), "--verbosity", "quiet"]) == 1
    assert "Dataset not found" in capsys.readouterr().err


def test_repair_links_wires_driver(tmp_path, monkeypatch, fake_http) -> None:
    for name in ("CONCURRENCY", "MAX_ITEMS", "GATHERERS", "TARGET", "VERBOSITY", "RESUME"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(cli, "HttpClient", lambda timeout: fake_http)
    fake_http.add("https://example.com/case")
    path = _dataset(tmp_path)
    code = main(
        [
            "repair-links",
            str(path),
            "--target",
            "missing_outbound",
            "--gatherers",
            "direct",
            "--verbosity",
            "quiet",
        ]
    )
    assert code == 0
    report = json.loads((tmp_path / "campaigns.repair-links.report.json").read_text(encoding="utf-8"))
    assert report["checked"] == 2
    assert report["skipped"] == 1
    assert report["noCandidates"] == 1
    assert not (tmp_path / "campaigns.repair-links.progress.json").exists()


class SignalOnRecord(RecordProcessor):
    """Delivers SIGTERM through the installed handler while a record is in flight."""

    command = "repair-links"
    trigger = "c2"

    def process(self, record):
        if record.id == self.trigger:
            handler = signal.getsignal(signal.SIGTERM)
            handler(signal.SIGTERM, None)
        return RecordResult(Outcome.KEPT)


def test_sigterm_stops_run_and_saves_checkpoint(tmp_path, monkeypatch) -> None:
    for name in ("CONCURRENCY", "MAX_ITEMS", "GATHERERS", "TARGET", "VERBOSITY", "RESUME", "SAVE_EVERY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setitem(cli.PROCESSORS, "repair-links", SignalOnRecord)
    path = tmp_path / "campaigns.json"
    path.write_text(json.dumps([{"id": f"c{n}", "title": f"Campaign {n}"} for n in range(10)]), encoding="utf-8")
    before = signal.getsignal(signal.SIGTERM)

    code = main(["repair-links", str(path), "--concurrency", "1", "--gatherers", "direct", "--verbosity", "quiet"])

    assert code == EXIT_INTERRUPTED == 130
    assert signal.getsignal(signal.SIGTERM) is before
    progress = json.loads((tmp_path / "campaigns.repair-links.progress.json").read_text(encoding="utf-8"))
    assert progress["nextIndex"] == 3
    assert progress["checked"] == 3
    report = json.loads((tmp_path / "campaigns.repair-links.report.json").read_text(encoding="utf-8"))
    assert report["interrupted"] is True
    assert report["kept"] == 3
