"""Version string for the CLI banner and the default User-Agent."""

from __future__ import annotations

import re
from importlib.metadata import PackageNotFoundError, version as package_version
from pathlib import Path
from typing import Optional

DISTRIBUTION = "caselink"
FALLBACK_VERSION = "0.4.0"
PYPROJECT = Path(__file__).resolve().parents[2] / "pyproject.toml"
VERSION_LINE_RE = re.compile(r'(?m)^version\s*=\s*"([^"]+)"\s*$')


def checkout_version(pyproject: Path = PYPROJECT) -> Optional[str]:
    """Version declared by a source checkout, if running from one."""
    try:
        text = pyproject.read_text(encoding="utf-8")
    except OSError:
        return None
    if f'name = "{DISTRIBUTION}"' not in text:
        return None
    match = VERSION_LINE_RE.search(text)
    return match.group(1).strip() if match else None


def resolve_version() -> str:
    # An editable checkout may be ahead of the installed metadata.
    found = checkout_version()
    if found:
        return found
    try:
        return package_version(DISTRIBUTION)
    except PackageNotFoundError:
        return FALLBACK_VERSION


VERSION = resolve_version()
