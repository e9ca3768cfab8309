"""Error taxonomy for the cascade timing engine and handshake coordinator.

Only :class:`ConfigError` is fatal to a run. The other errors are raised at
their source and recovered locally by the component that owns them.
"""

from __future__ import annotations


class CascadeError(Exception):
    """Base class for all cascade_sync errors."""


class ConfigError(CascadeError, ValueError):
    """Invalid cascade parameters; raised before any layer runs."""


class StimulusError(CascadeError):
    """A background stimulus could not start or failed while running."""


class ChannelError(CascadeError):
    """A channel is unavailable or rejected a send."""


class StorageError(CascadeError):
    """Best-effort persistence failed."""
