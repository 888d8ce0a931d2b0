"""
CardIssuer -- mints loyalty cards with globally unique numbers.

Responsibility:
    Generates a card number, inserts the card, and on a uniqueness violation
    regenerates and retries a bounded number of times.  Uniqueness is decided
    by the ``uq_loyalty_cards_card_number`` index, never by a pre-check.

Architecture position:
    Kernel > Services.  Called only by EnrollmentActivator, which holds the
    enrollment row lock for the pair while minting.

Failure modes:
    - CardNumberGenerationError after ``max_attempts`` collisions.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from loyalty_kernel.domain.card_numbers import (
    SuffixFactory,
    format_card_number,
    random_suffix,
)
from loyalty_kernel.domain.clock import Clock
from loyalty_kernel.domain.enrollment import CardStatus
from loyalty_kernel.domain.identifiers import BusinessId, CustomerId, ProgramId
from loyalty_kernel.exceptions import CardNumberGenerationError
from loyalty_kernel.logging_config import get_logger
from loyalty_kernel.models.enrollment import LoyaltyCardModel
from loyalty_kernel.services.base import BaseService

logger = get_logger("services.card_issuer")

DEFAULT_CARD_PREFIX = "GC"
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_SUFFIX_DIGITS = 4


class CardIssuer(BaseService[LoyaltyCardModel]):
    """
    Mint cards for (customer, program) pairs.

    Guarantees:
        - New cards are ACTIVE with zero points.
        - Each insert attempt runs in its own SAVEPOINT, so a collision never
          aborts the caller's transaction.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        prefix: str = DEFAULT_CARD_PREFIX,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        suffix_digits: int = DEFAULT_SUFFIX_DIGITS,
        suffix_factory: SuffixFactory | None = None,
    ):
        super().__init__(session, clock)
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._prefix = prefix
        self._max_attempts = max_attempts
        self._suffix_digits = suffix_digits
        self._suffix_factory = suffix_factory or random_suffix

    def find_card(
        self,
        customer_id: CustomerId,
        program_id: ProgramId,
        *,
        lock: bool = False,
    ) -> LoyaltyCardModel | None:
        """Return the pair's card in any status, or None."""
        stmt = select(LoyaltyCardModel).where(
            LoyaltyCardModel.customer_id == int(customer_id),
            LoyaltyCardModel.program_id == int(program_id),
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.session.execute(stmt).scalar_one_or_none()

    def get_card(self, card_id: UUID) -> LoyaltyCardModel | None:
        return self.session.get(LoyaltyCardModel, card_id)

    def mint(
        self,
        customer_id: CustomerId,
        program_id: ProgramId,
        business_id: BusinessId,
    ) -> LoyaltyCardModel:
        """
        Insert a new ACTIVE card for the pair.

        If the pair already has a card by the time the insert lands (a
        concurrent writer that did not hold the enrollment lock), that card
        is returned instead of retrying.

        Raises:
            CardNumberGenerationError: every attempt collided on card number.
        """
        for attempt in range(1, self._max_attempts + 1):
            now = self.clock.now_utc()
            card_number = format_card_number(
                self._prefix,
                business_id,
                program_id,
                customer_id,
                now,
                self._suffix_factory(self._suffix_digits),
            )

            savepoint = self.session.begin_nested()
            try:
                card = LoyaltyCardModel(
                    customer_id=int(customer_id),
                    program_id=int(program_id),
                    business_id=int(business_id),
                    card_number=card_number,
                    status=CardStatus.ACTIVE.value,
                    points=0,
                    created_at=now,
                    updated_at=now,
                )
                self.session.add(card)
                self.session.flush()
                savepoint.commit()
            except IntegrityError:
                savepoint.rollback()
                existing = self.find_card(customer_id, program_id, lock=True)
                if existing is not None:
                    logger.info(
                        "card_pair_already_issued",
                        extra={
                            "customer_id": int(customer_id),
                            "program_id": int(program_id),
                            "card_id": str(existing.id),
                        },
                    )
                    return existing
                logger.warning(
                    "card_number_collision",
                    extra={
                        "customer_id": int(customer_id),
                        "program_id": int(program_id),
                        "attempt": attempt,
                        "max_attempts": self._max_attempts,
                    },
                )
                continue

            logger.info(
                "card_minted",
                extra={
                    "card_id": str(card.id),
                    "card_number": card_number,
                    "customer_id": int(customer_id),
                    "program_id": int(program_id),
                    "business_id": int(business_id),
                    "attempt": attempt,
                },
            )
            return card

        logger.error(
            "card_number_generation_exhausted",
            extra={
                "customer_id": int(customer_id),
                "program_id": int(program_id),
                "attempts": self._max_attempts,
            },
        )
        raise CardNumberGenerationError(
            int(customer_id), int(program_id), self._max_attempts,
        )
