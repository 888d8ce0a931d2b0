"""
Identifiers -- strongly-typed upstream entity ids.

Responsibility:
    Customer, business and program ids are owned by upstream systems and are
    positive integers.  Wrapping each in its own value type stops a program
    id from being passed where a customer id is expected, and centralizes the
    boundary validation that previously relied on ad-hoc string-to-int casts.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Failure modes:
    - InvalidIdentifierError for booleans, non-positive values, floats,
      padded/signed/leading-zero strings, or values beyond BigInteger range.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import ClassVar, TypeVar

from loyalty_kernel.exceptions import InvalidIdentifierError

_CANONICAL = re.compile(r"[1-9][0-9]*")
_MAX_ID = 2**63 - 1

IdT = TypeVar("IdT", bound="EntityId")


@dataclass(frozen=True, slots=True)
class EntityId:
    """
    Positive integer identifier.

    Contract:
        ``value`` is an ``int`` in [1, 2**63 - 1].  Construct through
        ``parse()`` at API boundaries; direct construction validates too.

    Guarantees:
        - Immutable, hashable and ordered by value within one kind.
        - ``str(id)`` is the canonical decimal form accepted by ``parse()``.
    """

    value: int
    KIND: ClassVar[str] = "entity"

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or not isinstance(self.value, int):
            raise InvalidIdentifierError(self.KIND, self.value)
        if not 0 < self.value <= _MAX_ID:
            raise InvalidIdentifierError(self.KIND, self.value)

    @classmethod
    def parse(cls: type[IdT], raw: object) -> IdT:
        """Parse an int or canonical decimal string into this id type."""
        if isinstance(raw, cls):
            return raw
        if isinstance(raw, EntityId):
            # A ProgramId is never silently accepted as a CustomerId.
            raise InvalidIdentifierError(cls.KIND, raw)
        if isinstance(raw, str):
            if not _CANONICAL.fullmatch(raw):
                raise InvalidIdentifierError(cls.KIND, raw)
            return cls(int(raw))
        return cls(raw)  # type: ignore[arg-type]

    def __int__(self) -> int:
        return self.value

    def __lt__(self, other: EntityId) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self.value < other.value

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True, slots=True)
class CustomerId(EntityId):
    KIND: ClassVar[str] = "customer"


@dataclass(frozen=True, slots=True)
class BusinessId(EntityId):
    KIND: ClassVar[str] = "business"


@dataclass(frozen=True, slots=True)
class ProgramId(EntityId):
    KIND: ClassVar[str] = "program"
