"""
RelationshipLedger -- customer <-> business relationship status.

One row per pair, last write wins.  Accepting any program invitation makes
the relationship ACTIVE; declining makes it DECLINED.
"""

from loyalty_kernel.domain.enrollment import RelationshipStatus
from loyalty_kernel.logging_config import get_logger
from loyalty_kernel.models.relationship import CustomerBusinessRelationshipModel
from loyalty_kernel.services.base import BaseService

logger = get_logger("services.relationship_ledger")


class RelationshipLedger(BaseService[CustomerBusinessRelationshipModel]):

    def upsert(
        self,
        customer_id: int,
        business_id: int,
        status: RelationshipStatus,
    ) -> CustomerBusinessRelationshipModel:
        now = self.clock.now_utc()
        relationship, created = self._lock_or_create(
            CustomerBusinessRelationshipModel,
            keys={"customer_id": int(customer_id), "business_id": int(business_id)},
            defaults={"status": status.value, "created_at": now, "updated_at": now},
        )
        if not created and relationship.status != status.value:
            relationship.status = status.value
            relationship.updated_at = now
            self.session.flush()

        logger.debug(
            "relationship_upserted",
            extra={
                "customer_id": int(customer_id),
                "business_id": int(business_id),
                "status": status.value,
                "relationship_created": created,
            },
        )
        return relationship
