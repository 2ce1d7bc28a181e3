from __future__ import annotations

import datetime as dt
import json
import threading
from pathlib import Path
from typing import Any, Iterable, Optional

VERBOSITY_LEVELS = {"quiet": 0, "info": 1, "debug": 2}


class RunLogger:
    """Timestamped run log, printed and optionally appended to a file.

    ``mute`` drops any line containing one of the given substrings; use it to
    silence noisy sources without touching the process-wide stdout.
    """

    def __init__(
        self,
        log_path: Optional[Path] = None,
        verbosity: str = "info",
        also_stdout: bool = True,
        mute: Iterable[str] = (),
    ) -> None:
        if verbosity not in VERBOSITY_LEVELS:
            raise ValueError(f"Unknown verbosity: {verbosity}")
        self.log_path = log_path
        self.level = VERBOSITY_LEVELS[verbosity]
        self.also_stdout = also_stdout
        self.mute = tuple(m for m in mute if m)
        self._lock = threading.Lock()

    def _emit(self, msg: str, level: int) -> None:
        if level > self.level:
            return
        if any(m in msg for m in self.mute):
            return
        stamp = dt.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        line = f"[{stamp}] {msg}"
        with self._lock:
            if self.log_path:
                with self.log_path.open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
            if self.also_stdout:
                print(line, flush=True)

    def log(self, msg: str) -> None:
        self._emit(msg, VERBOSITY_LEVELS["info"])

    def debug(self, msg: str) -> None:
        self._emit(msg, VERBOSITY_LEVELS["debug"])

    def summary(self, payload: Any) -> None:
        # Final summaries are printed even in quiet mode.
        self._emit(json.dumps(payload, ensure_ascii=False, indent=2), VERBOSITY_LEVELS["quiet"])
