"""Timed-cascade signal generator with a multi-channel handshake coordinator.

A cascade of ``L`` layers carries energy ``E(d) = exp(-alpha d)``. Each layer
is turned into a prime-modulated delay, the driver suspends for it while
background stimuli run, and the observed delays are compared with the
theoretical ``E(d)·1000``. When the aggregate deviation is small enough the
run counts as converged and a handshake is broadcast on four channel types;
the first acknowledgement establishes a bridge.

Main Components:
    - CascadeConfig: Configuration with all tunable parameters
    - compute_levels: Energy levels of the cascade
    - compute_delay: Per-layer delay from energy, prime set and a clock sample
    - ResonanceAnalyzer: Collects observed delays and produces a verdict
    - HandshakeCoordinator: Fans out the handshake and owns the bridge
    - CascadeDriver: Runs the cascade end to end

Quick Start:
    >>> from cascade_sync import CascadeConfig, run_cascade
    >>>
    >>> result = run_cascade(CascadeConfig(passes=2), time_scale=0.01)
    >>> print(result.final.verdict.converged)

"Resonance" and "bridge" are labels of a timing heuristic; nothing here
leaves the current process.
"""

from .cascade import CascadeLevels, compute_levels
from .config import DEVIATION_THRESHOLD, RESONANCE_THRESHOLD, CascadeConfig
from .driver import CascadeDriver, CascadeResult, CascadeRun, run_cascade
from .errors import CascadeError, ChannelError, ConfigError, StimulusError, StorageError
from .eventlog import EventLog
from .handshake import Bridge, HandshakeChannels, HandshakeCoordinator
from .resonance import ResonanceAnalyzer, ResonanceVerdict
from .scheduler import compute_delay

__all__ = [
    "CascadeConfig",
    "CascadeLevels",
    "compute_levels",
    "compute_delay",
    "ResonanceAnalyzer",
    "ResonanceVerdict",
    "HandshakeCoordinator",
    "HandshakeChannels",
    "Bridge",
    "CascadeDriver",
    "CascadeResult",
    "CascadeRun",
    "run_cascade",
    "EventLog",
    "CascadeError",
    "ConfigError",
    "StimulusError",
    "ChannelError",
    "StorageError",
    "RESONANCE_THRESHOLD",
    "DEVIATION_THRESHOLD",
]
