"""Content-derived transaction identity.

A base fingerprint is a SHA256 digest over the normalized tuple
(user_id, date, description, amount). It does not distinguish two
genuinely identical transactions on the same day; the reconciliation
engine appends an occurrence index to form the final fingerprint:

    {base}:{occurrence_index}
"""

import hashlib
import json
import string
from datetime import date
from typing import Tuple

_EDGE_PUNCTUATION = string.punctuation + "‘’“”–—"


def normalize_description(description: str) -> str:
    """Lowercase, strip leading/trailing punctuation, collapse whitespace.

    "  COFFEE   Shop. " and "coffee shop" normalize identically.
    """
    collapsed = " ".join(str(description or "").lower().split())
    return " ".join(collapsed.strip(_EDGE_PUNCTUATION + " ").split())


def base_fingerprint(user_id: str, txn_date: date, description: str, amount: int) -> str:
    """Deterministic SHA256 over the normalized identity fields.

    The payload is serialized as compact JSON so no field value can bleed
    into its neighbour.

    Returns:
        64-character lowercase hex digest.
    """
    payload = [
        str(user_id),
        txn_date.isoformat(),
        normalize_description(description),
        int(amount),
    ]
    raw = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def final_fingerprint(base: str, occurrence_index: int) -> str:
    if occurrence_index < 0:
        raise ValueError("occurrence index must be non-negative")
    return f"{base}:{occurrence_index}"


def split_fingerprint(fingerprint: str) -> Tuple[str, int]:
    """Inverse of final_fingerprint."""
    base, sep, index = fingerprint.rpartition(":")
    if not sep or not base or not index.isdigit():
        raise ValueError(f"not a final fingerprint: {fingerprint!r}")
    return base, int(index)
