"""Caselink: link and thumbnail repair for the campaign case-study dataset."""

from __future__ import annotations

from .versioning import VERSION as __version__

__all__ = ["__version__"]
