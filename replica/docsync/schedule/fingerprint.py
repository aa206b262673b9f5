"""
Cheap content fingerprint used for change suppression.

The hash is the classic 32-bit rolling hash (h = h*31 + c) over the
UTF-16 code units of the compact JSON serialization, rendered as a
signed decimal string. Fingerprints written by other clients of the same
stored state compare equal to ours.

Not a cryptographic hash; collisions only cost a skipped write that the
next real change repairs.
"""

from __future__ import annotations

from typing import Any

from ..chunk.budget import compact_json


def hash_string(value: str) -> str:
    """32-bit signed rolling hash of a string, as a decimal string."""
    data = value.encode("utf-16-le", "surrogatepass")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return str(h)


def fingerprint(document: Any) -> str:
    return hash_string(compact_json(document))
