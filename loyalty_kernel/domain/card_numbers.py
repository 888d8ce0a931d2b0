"""
Card number formatting.

Card numbers look like ``GC-3-5-10-240101120000-0427``:
prefix, business, program, customer, issue timestamp (YYMMDDHHMMSS) and a
random zero-padded suffix.  The business/program/customer part makes a
collision possible only between two mints for the same pair in the same
second; the unique index on ``loyalty_cards.card_number`` catches those.
"""

import secrets
from collections.abc import Callable
from datetime import datetime

from loyalty_kernel.domain.clock import ensure_utc
from loyalty_kernel.domain.identifiers import BusinessId, CustomerId, ProgramId

SuffixFactory = Callable[[int], str]


def random_suffix(digits: int) -> str:
    """Cryptographically random decimal suffix with exactly ``digits`` digits."""
    return str(secrets.randbelow(10**digits)).zfill(digits)


def format_card_number(
    prefix: str,
    business_id: BusinessId,
    program_id: ProgramId,
    customer_id: CustomerId,
    issued_at: datetime,
    suffix: str,
) -> str:
    stamp = ensure_utc(issued_at).strftime("%y%m%d%H%M%S")
    return f"{prefix}-{business_id}-{program_id}-{customer_id}-{stamp}-{suffix}"
