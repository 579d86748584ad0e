"""Sender access policy.

Numbers are compared after stripping every non-digit, so ``+1 (555) 987-6543``
and ``+15559876543`` are the same sender. Distinct-looking identifiers that
normalize to the same digits are treated as equal.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable

_NON_DIGIT_RE = re.compile(r"\D")


class AccessMode(str, enum.Enum):
    DISABLED = "disabled"
    OPEN = "open"
    ALLOWLIST = "allowlist"


def normalize_number(value: str) -> str:
    return _NON_DIGIT_RE.sub("", value or "")


@dataclass(frozen=True)
class AccessPolicy:
    mode: AccessMode = AccessMode.ALLOWLIST
    allowed: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_config(cls, mode: str, allow_from: Iterable[str] = ()) -> "AccessPolicy":
        normalized = {normalize_number(entry) for entry in allow_from}
        normalized.discard("")
        return cls(mode=AccessMode(mode), allowed=frozenset(normalized))


class AccessGuard:
    """Stateless evaluator of an ``AccessPolicy``."""

    def __init__(self, policy: AccessPolicy):
        self.policy = policy

    def is_allowed(self, sender: str) -> bool:
        if self.policy.mode is AccessMode.DISABLED:
            return False
        if self.policy.mode is AccessMode.OPEN:
            return True
        # Allowlist: an empty set admits nobody
        normalized = normalize_number(sender)
        return bool(normalized) and normalized in self.policy.allowed

    def describe(self) -> str:
        if self.policy.mode is not AccessMode.ALLOWLIST:
            return self.policy.mode.value
        return f"allowlist ({len(self.policy.allowed)} numbers)"
