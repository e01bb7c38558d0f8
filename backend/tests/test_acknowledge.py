"""
Acknowledgment state machine.
"""

import uuid

import pytest

from conftest import WORKSPACE_ID, audit_records, seed_products, set_quantity
from core.errors import AlreadyAcknowledgedError, InvalidStateError, NotFoundError, ValidationError


@pytest.fixture
async def open_alert(services, session_factory, test_db):
    await seed_products(session_factory, WORKSPACE_ID, {"SKU-A": 4})
    result = await services.engine.sweep(test_db, WORKSPACE_ID)
    return result.created[0]


@pytest.mark.asyncio
class TestAcknowledge:
    async def test_acknowledges_open_alert(self, services, test_db, open_alert):
        alert = await services.acknowledger.acknowledge(test_db, str(open_alert.alert_id), "user:ops@example.com")

        assert alert.acknowledged_by == "user:ops@example.com"
        assert alert.acknowledged_at is not None
        assert alert.status == "open"

    async def test_writes_one_audit_record(self, services, session_factory, test_db, open_alert):
        await services.acknowledger.acknowledge(test_db, str(open_alert.alert_id), "user:ops@example.com")

        records = await audit_records(session_factory, "acknowledge")
        assert len(records) == 1
        record = records[0]
        assert record.actor == "user:ops@example.com"
        assert record.target_type == "alert"
        assert record.target_id == str(open_alert.alert_id)
        assert record.payload == {
            "previous_status": "open",
            "alert_type": "low_stock",
            "sku": "SKU-A",
            "severity": "warning",
        }

    async def test_notifies_acknowledgment(self, services, test_db, open_alert, notifier):
        await services.acknowledger.acknowledge(test_db, open_alert.alert_id, "user:ops@example.com")
        await services.tasks.drain()

        assert ("acknowledged", ["SKU-A"], False) in notifier.calls

    async def test_second_acknowledgment_rejected(self, services, test_db, open_alert):
        await services.acknowledger.acknowledge(test_db, str(open_alert.alert_id), "user:first@example.com")

        with pytest.raises(AlreadyAcknowledgedError) as exc_info:
            await services.acknowledger.acknowledge(test_db, str(open_alert.alert_id), "user:second@example.com")

        assert exc_info.value.acknowledged_by == "user:first@example.com"
        assert exc_info.value.acknowledged_at is not None
        assert exc_info.value.status_code == 400

    async def test_closed_alert_rejected(self, services, session_factory, test_db, open_alert):
        await set_quantity(session_factory, WORKSPACE_ID, "SKU-A", 99)
        await services.engine.sweep(test_db, WORKSPACE_ID)

        with pytest.raises(InvalidStateError) as exc_info:
            await services.acknowledger.acknowledge(test_db, str(open_alert.alert_id), "user:ops@example.com")

        assert exc_info.value.message == "Cannot acknowledge a closed alert"
        assert not isinstance(exc_info.value, AlreadyAcknowledgedError)

    async def test_unknown_alert(self, services, test_db):
        with pytest.raises(NotFoundError):
            await services.acknowledger.acknowledge(test_db, str(uuid.uuid4()), "user:ops@example.com")

    async def test_malformed_id_is_not_found(self, services, test_db):
        with pytest.raises(NotFoundError):
            await services.acknowledger.acknowledge(test_db, "not-a-uuid", "user:ops@example.com")

    async def test_missing_actor(self, services, test_db, open_alert):
        with pytest.raises(ValidationError):
            await services.acknowledger.acknowledge(test_db, str(open_alert.alert_id), "  ")

    async def test_acknowledged_alert_still_closes_on_recovery(self, services, session_factory, test_db, open_alert):
        await services.acknowledger.acknowledge(test_db, str(open_alert.alert_id), "user:ops@example.com")
        await set_quantity(session_factory, WORKSPACE_ID, "SKU-A", 99)

        result = await services.engine.sweep(test_db, WORKSPACE_ID)

        assert result.closed_ids == [open_alert.alert_id]
