from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Any, Dict, Optional


_LETTERS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
_DIGITS = "0123456789"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def only_digits(value: Any) -> str:
    return "".join(ch for ch in str(value or "") if ch.isdigit())


def validate_cpf(cpf: str) -> bool:
    """Check a CPF against its two verifier digits."""
    digits = only_digits(cpf)
    if len(digits) != 11 or digits == digits[0] * 11:
        return False
    nums = [int(d) for d in digits]

    def _check(n: int) -> int:
        total = sum(nums[i] * (n + 1 - i) for i in range(n))
        return (total * 10) % 11 % 10

    return _check(9) == nums[9] and _check(10) == nums[10]


def generate_freight_id(prefix: str) -> str:
    """
    Generate a public freight id: <prefix>-NNLLL

    Example: #AG-42XQZ
    """
    nums = "".join(secrets.choice(_DIGITS) for _ in range(2))
    chars = "".join(secrets.choice(_LETTERS) for _ in range(3))
    return f"{prefix}-{nums}{chars}"


def to_isoformat(value: Any) -> Optional[str]:
    """Serialize Firestore timestamps (DatetimeWithNanoseconds), datetimes and epochs."""
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc).replace(microsecond=0).isoformat()
    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return dt.replace(microsecond=0).isoformat()
    if isinstance(value, str):
        return value or None
    to_dt = getattr(value, "to_datetime", None)
    if callable(to_dt):
        return to_isoformat(to_dt())
    return None


def snapshot_to_dict(snap) -> Dict[str, Any]:
    """Document data plus its Firestore id under `id` (custom ids in data win)."""
    data = snap.to_dict() or {}
    out = {"id": snap.id}
    out.update(data)
    return out
