"""Event signatures and log decoding helpers."""

from __future__ import annotations

from typing import Any

from eth_abi import decode as abi_decode
from web3 import AsyncWeb3


def event_topic(signature: str) -> str:
    """0x-prefixed keccak topic hash of an event signature."""
    return AsyncWeb3.to_hex(AsyncWeb3.keccak(text=signature))


TASK_COMPLETED_TOPIC = event_topic("TaskCompleted(address,uint256)")
TASK_FAILED_TOPIC = event_topic("TaskFailed(address,uint256)")
DISPUTE_OPENED_TOPIC = event_topic("DisputeOpened(address,uint256)")
SLASHED_TOPIC = event_topic("Slashed(address,uint256)")
REGISTERED_TOPIC = event_topic("Registered(uint256,string,address)")

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def to_hex(value: Any) -> str:
    """Normalize HexBytes/bytes/str log fields to a lowercase 0x string."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "0x" + bytes(value).hex()
    text = str(value).lower()
    return text if text.startswith("0x") else "0x" + text


def topic_to_address(topic: Any) -> str | None:
    """Extract a lowercase address from a 32-byte indexed topic.

    Returns None when the topic is not a well-formed 32-byte word.
    """
    hexed = to_hex(topic)[2:]
    if len(hexed) != 64:
        return None
    try:
        int(hexed, 16)
    except ValueError:
        return None
    return "0x" + hexed[-40:]


def topic_to_int(topic: Any) -> int:
    return int(to_hex(topic), 16)


def log_topics(log: dict[str, Any]) -> list[str]:
    return [to_hex(t) for t in log.get("topics") or []]


def decode_string(data: Any) -> str:
    """ABI-decode a single dynamic `string` from log data."""
    raw = bytes(data) if isinstance(data, (bytes, bytearray, memoryview)) else bytes.fromhex(to_hex(data)[2:])
    (value,) = abi_decode(["string"], raw)
    return str(value)
