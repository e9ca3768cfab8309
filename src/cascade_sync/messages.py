"""Handshake message variants.

Messages are frozen dataclasses carrying plain values. ``to_wire`` and
``from_wire`` convert between a message and a tagged dict
(``{"type": ..., **fields}``) at a channel boundary; unknown tags are rejected.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Tuple, Type, Union

HANDSHAKE = "CASCADE_HANDSHAKE"
HANDSHAKE_RESPONSE = "CASCADE_HANDSHAKE_RESPONSE"
EXCHANGE = "CASCADE_EXCHANGE"
COMPUTE_RESULT = "CASCADE_COMPUTE_RESULT"


@dataclass(frozen=True)
class Handshake:
    alpha: float
    layers: int
    energy: float
    timestamp: float


@dataclass(frozen=True)
class HandshakeResponse:
    bridge_id: str


@dataclass(frozen=True)
class Exchange:
    bridge_id: str
    layers: int
    energy_distribution: Tuple[float, ...]
    prime_resonance: Tuple[int, ...]


@dataclass(frozen=True)
class ComputeResult:
    """Result of an isolated-compute stimulus; the core only logs it."""

    layer: int
    energy: float
    pressure: float


Message = Union[Handshake, HandshakeResponse, Exchange, ComputeResult]

_TAGS: Dict[Type[Any], str] = {
    Handshake: HANDSHAKE,
    HandshakeResponse: HANDSHAKE_RESPONSE,
    Exchange: EXCHANGE,
    ComputeResult: COMPUTE_RESULT,
}
_TYPES: Dict[str, Type[Any]] = {tag: cls for cls, tag in _TAGS.items()}
_SEQUENCE_FIELDS = ("energy_distribution", "prime_resonance")


def tag_of(message: Message) -> str:
    try:
        return _TAGS[type(message)]
    except KeyError:
        raise TypeError(f"Not a handshake message: {type(message).__name__}") from None


def to_wire(message: Message) -> Dict[str, Any]:
    payload = asdict(message)
    for name in _SEQUENCE_FIELDS:
        if name in payload:
            payload[name] = list(payload[name])
    return {"type": tag_of(message), **payload}


def from_wire(payload: Dict[str, Any]) -> Message:
    """Rebuild a message from its tagged dict form.

    Raises:
        ValueError: if the tag is missing or unknown, or the fields do not
            match the tagged type.
    """
    data = dict(payload)
    tag = data.pop("type", None)
    if tag not in _TYPES:
        raise ValueError(f"Unknown message type: {tag!r}")
    for name in _SEQUENCE_FIELDS:
        if name in data:
            data[name] = tuple(data[name])
    try:
        return _TYPES[tag](**data)
    except TypeError as exc:
        raise ValueError(f"Malformed {tag} payload: {exc}") from None
