"""
Tests for NotificationSink: emission, action/read flags and retention pruning.
"""

from uuid import uuid4

from loyalty_kernel.domain.enrollment import NotificationAudience, NotificationType
from loyalty_kernel.domain.identifiers import BusinessId, CustomerId, ProgramId
from loyalty_kernel.models.notification import NotificationModel


def _emit(notifications, *, requires_action=False, customer_id=10):
    return notifications.emit(
        customer_id=customer_id,
        business_id=3,
        audience=NotificationAudience.CUSTOMER,
        notification_type=NotificationType.CARD_CREATED,
        title="Loyalty Card Created",
        message="Your loyalty card is ready!",
        requires_action=requires_action,
    )


class TestEmit:

    def test_defaults(self, notifications, deterministic_clock):
        notification = _emit(notifications)
        assert notification.action_taken is False
        assert notification.is_read is False
        assert notification.read_at is None
        assert notification.created_at == deterministic_clock.now_utc()


class TestSetActionTaken:

    def test_actioning_marks_read(self, notifications, deterministic_clock):
        notification = _emit(notifications, requires_action=True)
        deterministic_clock.advance(30)

        assert notifications.set_action_taken(notification.id)

        assert notification.action_taken is True
        assert notification.is_read is True
        assert notification.read_at == deterministic_clock.now_utc()

    def test_clearing_keeps_read_flag(self, notifications):
        notification = _emit(notifications, requires_action=True)
        notifications.set_action_taken(notification.id)
        notifications.set_action_taken(notification.id, False)
        assert notification.action_taken is False
        assert notification.is_read is True

    def test_missing_notification(self, notifications, captured_logs):
        assert not notifications.set_action_taken(uuid4())
        assert not notifications.set_action_taken(None)
        assert any(r["message"] == "notification_missing" for r in captured_logs())


class TestPruneStale:

    def test_prunes_only_read_old_and_unreferenced(
        self, session, notifications, processor, deterministic_clock,
    ):
        informational_read = _emit(notifications)
        informational_read.is_read = True
        informational_unread = _emit(notifications)
        action_read_not_taken = _emit(notifications, requires_action=True)
        action_read_not_taken.is_read = True
        action_done = _emit(notifications, requires_action=True)
        notifications.set_action_taken(action_done.id)
        request = processor.create_request(CustomerId(10), BusinessId(3), ProgramId(5))
        processor.resolve(request.request_id, approve=False)
        session.flush()

        deterministic_clock.advance_days(31)
        fresh = _emit(notifications)
        notifications.set_action_taken(fresh.id)

        deleted = notifications.prune_stale(retention_days=30)

        # Informational read + actioned.  The business notice from the
        # rejection is unread and stays; the request's own notification is
        # still referenced and stays.
        assert deleted == 2
        assert session.get(NotificationModel, informational_read.id) is None
        assert session.get(NotificationModel, action_done.id) is None
        session.expire_all()
        assert session.get(NotificationModel, informational_unread.id) is not None
        assert session.get(NotificationModel, action_read_not_taken.id) is not None
        assert session.get(NotificationModel, request.notification_id) is not None
        assert session.get(NotificationModel, fresh.id) is not None

    def test_pruned_rows_leave_the_session(self, session, notifications, deterministic_clock):
        stale = _emit(notifications)
        notifications.set_action_taken(stale.id)
        deterministic_clock.advance_days(31)

        assert notifications.prune_stale(retention_days=30) == 1

        assert stale not in session
        session.expire_all()
        assert session.get(NotificationModel, stale.id) is None

    def test_nothing_to_prune(self, notifications):
        _emit(notifications)
        assert notifications.prune_stale(retention_days=30) == 0
