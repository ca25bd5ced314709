import pytest

from conftest import submitted_application
from zariya.services import loan_applications, loans, notifications


class ExplodingNotifier:
    async def send(self, event, payload):
        raise ConnectionError("smtp down")


@pytest.mark.asyncio
async def test_dispatch_delivers_known_events(notifier) -> None:
    await notifications.dispatch(notifications.LOAN_CREATED, {"loan_id": "x"})

    assert notifier.sent == [("loan.created", {"loan_id": "x"})]


@pytest.mark.asyncio
async def test_dispatch_rejects_unknown_events(notifier) -> None:
    with pytest.raises(ValueError):
        await notifications.dispatch("loan.exploded", {})
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_delivery_failure_is_swallowed(caplog) -> None:
    original = notifications.get_notifier()
    notifications.set_notifier(ExplodingNotifier())
    try:
        await notifications.dispatch(notifications.APPLICATION_REJECTED, {"application_id": "x"})
    finally:
        notifications.set_notifier(original)

    assert "Notification delivery failed" in caplog.text


@pytest.mark.asyncio
async def test_failed_notification_does_not_undo_approval(session_factory, db) -> None:
    application = await submitted_application(session_factory)
    approval = await loan_applications.approve_application(db, application.id, reviewed_by="officer-1")
    await db.commit()

    original = notifications.get_notifier()
    notifications.set_notifier(ExplodingNotifier())
    try:
        await notifications.dispatch(
            notifications.APPLICATION_APPROVED, loan_applications.notification_payload(approval.application)
        )
        await notifications.dispatch(notifications.LOAN_CREATED, loans.notification_payload(approval.loan))
    finally:
        notifications.set_notifier(original)

    async with session_factory() as session:
        stored = await loan_applications.get_application(session, application.id)
        assert stored.status == "approved"
        assert stored.loan_id == approval.loan.id
