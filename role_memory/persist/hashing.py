"""
Stable hashing utilities for deterministic record keys.

Goal ids and injection fingerprints are derived from these hashes, so equal
input must always produce the same digest across processes.
"""

import hashlib
import json
import unicodedata
from typing import Iterable


def stable_hash(obj: dict | list | str | bytes) -> str:
    """
    Compute stable hash of an object.

    - Dicts: sorted by keys, then JSON-serialized
    - Lists: JSON-serialized in order
    - Strings: NFC normalized, UTF-8 encoded
    - Bytes: used directly

    Returns:
        64-character hex string (blake2b)

    Examples:
        >>> stable_hash({"b": 2, "a": 1}) == stable_hash({"a": 1, "b": 2})
        True
    """
    if isinstance(obj, (dict, list)):
        canonical = json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
        data = canonical.encode("utf-8")
    elif isinstance(obj, str):
        data = unicodedata.normalize("NFC", obj).encode("utf-8")
    elif isinstance(obj, bytes):
        data = obj
    else:
        raise TypeError(f"Cannot hash type {type(obj)}: {obj}")

    h = hashlib.blake2b(data, digest_size=32)
    return h.hexdigest()


def goal_id_for(description: str) -> str:
    """
    Derive a goal id from its description.

    Whitespace and case are folded so restating the same goal maps to the
    same record.
    """
    folded = " ".join(description.split()).lower()
    return f"goal_{stable_hash(folded)[:12]}"


def memory_version(role_id: str, memory_ids: Iterable[str]) -> str:
    """
    Fingerprint of the memory set injected for a role.

    Returns:
        Short hash string (8 chars), or "none" when nothing was injected
    """
    ids = sorted(memory_ids)
    if not ids:
        return "none"
    return stable_hash(f"{role_id}:{'|'.join(ids)}")[:8]
