from __future__ import annotations


class CaselinkError(Exception):
    """Base class for errors that abort a whole invocation."""


class ConfigError(CaselinkError):
    pass


class DatasetError(CaselinkError):
    pass


class CheckpointError(CaselinkError):
    pass
