"""
NotificationSink -- durable record of customer/business messages.

Responsibility:
    Writes notification rows and flips their action/read flags.  Delivery
    (push, email) happens elsewhere by reading these rows.

Architecture position:
    Kernel > Services.  Flush-only; caller owns the transaction.
"""

from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import delete, exists, or_, select

from loyalty_kernel.domain.enrollment import NotificationAudience, NotificationType
from loyalty_kernel.logging_config import get_logger
from loyalty_kernel.models.approval_request import ApprovalRequestModel
from loyalty_kernel.models.notification import NotificationModel
from loyalty_kernel.services.base import BaseService

logger = get_logger("services.notification_sink")


class NotificationSink(BaseService[NotificationModel]):
    """Append notifications and maintain their flags."""

    def emit(
        self,
        *,
        customer_id: int,
        business_id: int,
        audience: NotificationAudience,
        notification_type: NotificationType,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
        requires_action: bool = False,
    ) -> NotificationModel:
        now = self.clock.now_utc()
        notification = NotificationModel(
            customer_id=int(customer_id),
            business_id=int(business_id),
            audience=audience.value,
            type=notification_type.value,
            title=title,
            message=message,
            data=data,
            requires_action=requires_action,
            action_taken=False,
            is_read=False,
            created_at=now,
            updated_at=now,
        )
        self.session.add(notification)
        self.session.flush()

        logger.debug(
            "notification_emitted",
            extra={
                "notification_id": str(notification.id),
                "notification_type": notification_type.value,
                "audience": audience.value,
                "customer_id": int(customer_id),
                "business_id": int(business_id),
            },
        )
        return notification

    def set_action_taken(self, notification_id: UUID | None, action_taken: bool = True) -> bool:
        """
        Set ``action_taken`` on a notification.  Marking it actioned also
        marks it read.

        Returns:
            False if the notification does not exist (orphaned request).
        """
        if notification_id is None:
            return False
        notification = self.session.get(NotificationModel, notification_id)
        if notification is None:
            logger.warning(
                "notification_missing",
                extra={"notification_id": str(notification_id)},
            )
            return False

        now = self.clock.now_utc()
        notification.action_taken = action_taken
        if action_taken and not notification.is_read:
            notification.is_read = True
            notification.read_at = now
        notification.updated_at = now
        self.session.flush()
        return True

    def prune_stale(self, retention_days: int) -> int:
        """
        Delete read notifications older than the retention window.  A
        notification that requires action must also have been actioned.

        Notifications still referenced by an approval request are kept so
        that pruning never creates an orphaned request.

        Returns:
            Number of rows deleted.
        """
        cutoff = self.clock.now_utc() - timedelta(days=retention_days)
        referenced = exists().where(
            ApprovalRequestModel.notification_id == NotificationModel.id
        )
        stale_ids = list(
            self.session.execute(
                select(NotificationModel.id).where(
                    NotificationModel.is_read.is_(True),
                    or_(
                        NotificationModel.action_taken.is_(True),
                        NotificationModel.requires_action.is_(False),
                    ),
                    NotificationModel.created_at < cutoff,
                    ~referenced,
                )
            ).scalars()
        )
        if not stale_ids:
            return 0

        # "fetch" drops the deleted rows from the identity map as well.
        self.session.execute(
            delete(NotificationModel)
            .where(NotificationModel.id.in_(stale_ids))
            .execution_options(synchronize_session="fetch")
        )
        self.session.flush()
        logger.info(
            "stale_notifications_pruned",
            extra={"deleted": len(stale_ids), "retention_days": retention_days},
        )
        return len(stale_ids)
