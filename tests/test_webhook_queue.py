"""Tests for the persistent webhook queue (enqueue, claim, backoff, retry)"""

import re
from datetime import datetime, timedelta

import pytest

from clinic_billing.domain.webhooks import queue
from clinic_billing.domain.webhooks.events import INVOICE_CREATED, WEBHOOK_FAILED, WEBHOOK_TEST
from clinic_billing.models_webhook import WebhookQueueItem

NOW = datetime(2025, 2, 10, 12, 0, 0)


def test_envelope_shape():
    envelope = queue.build_envelope(INVOICE_CREATED, {"invoice_id": 1}, NOW)

    assert set(envelope) == {"tipo", "timestamp", "data", "webhook_id"}
    assert envelope["tipo"] == INVOICE_CREATED
    assert envelope["timestamp"] == "2025-02-10T12:00:00Z"
    assert envelope["data"] == {"invoice_id": 1}
    assert re.fullmatch(r"[0-9a-f-]{36}", envelope["webhook_id"])


def test_every_envelope_gets_its_own_id():
    first = queue.build_envelope(INVOICE_CREATED, {}, NOW)
    second = queue.build_envelope(INVOICE_CREATED, {}, NOW)

    assert first["webhook_id"] != second["webhook_id"]


def test_enqueue_creates_due_pending_item(db):
    item = queue.enqueue_event(db, INVOICE_CREATED, {"invoice_id": 7}, now=NOW)

    assert item.id is not None
    assert item.status == queue.PENDING
    assert item.attempts == 0
    assert item.max_attempts == 3
    assert item.next_retry_at == NOW
    assert item.payload["data"] == {"invoice_id": 7}


@pytest.mark.parametrize("attempts,expected", [(1, 60), (2, 120), (3, 240), (6, 1920), (7, 3600), (20, 3600)])
def test_retry_delay_is_exponential_and_capped(attempts, expected):
    assert queue.retry_delay_seconds(attempts) == expected


class TestClaiming:
    def test_item_is_claimed_only_once(self, db):
        item = queue.enqueue_event(db, INVOICE_CREATED, {}, now=NOW)

        assert queue.claim_item(db, item.id, NOW) is True
        assert queue.claim_item(db, item.id, NOW) is False

        db.refresh(item)
        assert item.status == queue.PROCESSING
        assert item.claimed_at == NOW

    def test_claim_due_items_skips_future_and_claimed(self, db):
        due = queue.enqueue_event(db, INVOICE_CREATED, {"n": 1}, now=NOW - timedelta(minutes=1))
        queue.enqueue_event(db, INVOICE_CREATED, {"n": 2}, now=NOW + timedelta(minutes=5))

        first = queue.claim_due_items(db, NOW, limit=10)
        second = queue.claim_due_items(db, NOW, limit=10)

        assert [i.id for i in first] == [due.id]
        assert second == []

    def test_claim_respects_limit_and_order(self, db):
        items = [queue.enqueue_event(db, INVOICE_CREATED, {"n": n}, now=NOW - timedelta(minutes=5 - n)) for n in range(3)]

        claimed = queue.claim_due_items(db, NOW, limit=2)

        assert [i.id for i in claimed] == [items[0].id, items[1].id]

    def test_stale_claims_are_released(self, db):
        stale = queue.enqueue_event(db, INVOICE_CREATED, {}, now=NOW)
        fresh = queue.enqueue_event(db, INVOICE_CREATED, {}, now=NOW)
        queue.claim_item(db, stale.id, NOW - timedelta(minutes=10))
        queue.claim_item(db, fresh.id, NOW - timedelta(minutes=1))

        released = queue.release_stale_claims(db, NOW, timeout_seconds=300)

        assert released == 1
        db.refresh(stale)
        db.refresh(fresh)
        assert stale.status == queue.PENDING
        assert stale.claimed_at is None
        assert fresh.status == queue.PROCESSING


class TestOutcomes:
    def test_failed_attempts_back_off_then_fail(self, db):
        item = queue.enqueue_event(db, INVOICE_CREATED, {}, now=NOW)

        queue.mark_attempt_failed(db, item, "HTTP 500", NOW, status_code=500)
        assert item.status == queue.PENDING
        assert item.attempts == 1
        assert item.next_retry_at == NOW + timedelta(seconds=60)

        queue.mark_attempt_failed(db, item, "HTTP 500", NOW, status_code=500)
        assert item.next_retry_at == NOW + timedelta(seconds=120)

        queue.mark_attempt_failed(db, item, "HTTP 500", NOW, status_code=500)
        assert item.status == queue.FAILED
        assert item.attempts == 3
        assert item.next_retry_at is None
        assert item.processed_at == NOW
        assert item.last_error == "HTTP 500"

    def test_final_failure_emits_webhook_failed(self, db):
        item = queue.enqueue_event(db, INVOICE_CREATED, {}, max_attempts=1, now=NOW)

        queue.mark_attempt_failed(db, item, "Timeout after 5.0s", NOW)

        notice = db.query(WebhookQueueItem).filter(WebhookQueueItem.event_type == WEBHOOK_FAILED).one()
        assert notice.status == queue.PENDING
        assert notice.payload["data"]["queue_item_id"] == item.id
        assert notice.payload["data"]["event_type"] == INVOICE_CREATED
        assert notice.payload["data"]["last_error"] == "Timeout after 5.0s"

    @pytest.mark.parametrize("event_type", [WEBHOOK_FAILED, WEBHOOK_TEST])
    def test_failure_notices_do_not_cascade(self, db, event_type):
        item = queue.enqueue_event(db, event_type, {}, max_attempts=1, now=NOW)

        queue.mark_attempt_failed(db, item, "HTTP 500", NOW)

        assert db.query(WebhookQueueItem).count() == 1

    def test_long_errors_are_truncated(self, db):
        item = queue.enqueue_event(db, INVOICE_CREATED, {}, now=NOW)

        queue.mark_attempt_failed(db, item, "x" * 5000, NOW)

        assert len(item.last_error) == queue.MAX_ERROR_CHARS

    def test_mark_delivered(self, db):
        item = queue.enqueue_event(db, INVOICE_CREATED, {}, now=NOW)

        queue.mark_delivered(db, item, NOW, status_code=200, response_preview="ok")

        assert item.status == queue.DELIVERED
        assert item.attempts == 1
        assert item.last_status_code == 200
        assert item.processed_at == NOW


class TestManualRetry:
    def test_retry_creates_a_fresh_item(self, db):
        original = queue.enqueue_event(db, INVOICE_CREATED, {"invoice_id": 3}, max_attempts=1, now=NOW)
        queue.mark_attempt_failed(db, original, "HTTP 503", NOW)

        retry = queue.retry_item(db, original.id, now=NOW + timedelta(hours=1))

        assert retry.id != original.id
        assert retry.retry_of_id == original.id
        assert retry.status == queue.PENDING
        assert retry.attempts == 0
        assert retry.payload == original.payload
        assert retry.next_retry_at == NOW + timedelta(hours=1)

        db.refresh(original)
        assert original.status == queue.FAILED
        assert original.attempts == 1

    def test_delivered_items_can_be_retried(self, db):
        item = queue.enqueue_event(db, INVOICE_CREATED, {}, now=NOW)
        queue.mark_delivered(db, item, NOW, status_code=200)

        assert queue.retry_item(db, item.id).retry_of_id == item.id

    def test_in_flight_item_cannot_be_retried(self, db):
        item = queue.enqueue_event(db, INVOICE_CREATED, {}, now=NOW)

        with pytest.raises(queue.WebhookQueueError) as exc_info:
            queue.retry_item(db, item.id)

        assert exc_info.value.status_code == 409

    def test_unknown_item(self, db):
        with pytest.raises(queue.WebhookQueueError) as exc_info:
            queue.retry_item(db, 9999)

        assert exc_info.value.status_code == 404
