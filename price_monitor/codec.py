"""Decoding of inbound oracle events.

The monitor subscribes to Chainlink-style ``AnswerUpdated`` logs. The raw
payload it receives is a 4-byte selector followed by the ABI encoding of
``(uint80 roundId, int256 answer, uint256 startedAt, uint256 updatedAt)``.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError

from common.errors import InvalidParameter

__all__ = [
    "ANSWER_UPDATED_TOPIC",
    "ROUND_DATA_TYPES",
    "RoundData",
    "decode_round_data",
    "encode_round_data",
    "is_answer_updated",
]

# keccak256("AnswerUpdated(int256,uint256,uint256)")
ANSWER_UPDATED_TOPIC = "0x0559884fd3a460db3073b7fc896cc77986f16e378210ded43186175bf646fc5f"

ROUND_DATA_TYPES = ["uint80", "int256", "uint256", "uint256"]
_SELECTOR_LEN = 4
_BODY_LEN = 32 * len(ROUND_DATA_TYPES)


@dataclass(frozen=True, slots=True)
class RoundData:
    round_id: int
    answer: int
    started_at: int
    updated_at: int


def _to_bytes(payload: Union[bytes, bytearray, str]) -> bytes:
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    text = payload.strip()
    if text[:2].lower() == "0x":
        text = text[2:]
    try:
        return bytes.fromhex(text)
    except ValueError as exc:
        raise InvalidParameter("payload is not valid hex") from exc


def is_answer_updated(topic: Union[str, bytes]) -> bool:
    if isinstance(topic, (bytes, bytearray)):
        topic = "0x" + bytes(topic).hex()
    return topic.strip().lower() == ANSWER_UPDATED_TOPIC


def decode_round_data(payload: Union[bytes, bytearray, str]) -> RoundData:
    """Decode selector-prefixed round data; raises ``InvalidParameter``."""
    raw = _to_bytes(payload)
    if len(raw) < _SELECTOR_LEN + _BODY_LEN:
        raise InvalidParameter(
            f"payload too short: {len(raw)} bytes, need {_SELECTOR_LEN + _BODY_LEN}"
        )
    try:
        round_id, answer, started_at, updated_at = decode(
            ROUND_DATA_TYPES, raw[_SELECTOR_LEN:_SELECTOR_LEN + _BODY_LEN]
        )
    except DecodingError as exc:
        raise InvalidParameter(f"undecodable round data: {exc}") from exc
    return RoundData(round_id, answer, started_at, updated_at)


def encode_round_data(
    round_id: int, answer: int, started_at: int, updated_at: int, selector: bytes = b"\x00" * 4
) -> bytes:
    """Build a payload in the same layout (used by tooling and tests)."""
    return selector + encode(ROUND_DATA_TYPES, [round_id, answer, started_at, updated_at])
