"""Tests for the sync engine."""

import asyncio

import pytest

from mailhook.errors import CheckpointExpired, DispatchFailed, Unauthenticated
from mailhook.sync import AdvancePolicy, DomainEvent, Mailbox, SyncEngine, SyncOutcome, SyncState


@pytest.fixture
def make_engine(authed_mailbox, dispatcher):
    """
    Factory for engines on the authenticated mailbox.

    Usage:
        def test_something(make_engine, change_log_factory):
            engine = make_engine(change_log_factory([[record]]))
    """
    def _create(change_log, policy=AdvancePolicy.UNCONDITIONAL, **kwargs):
        return SyncEngine(authed_mailbox, change_log, dispatcher, policy=policy, **kwargs)

    return _create


@pytest.fixture
def synced_mailbox(authed_mailbox):
    """Authenticated mailbox with checkpoint 1000 observing Label_1."""
    authed_mailbox.checkpoint.advance("1000")
    authed_mailbox.subscriptions.subscribe("Label_1")
    return authed_mailbox


class TestBootstrapAndDiscard:
    """Notifications that never reach the change log."""

    @pytest.mark.asyncio
    async def test_bootstrap_without_checkpoint(
        self, make_engine, change_log_factory, notification_factory, authed_mailbox
    ):
        """Test the first notification only seeds the checkpoint."""
        change_log = change_log_factory()
        engine = make_engine(change_log)

        result = await engine.process_notification(notification_factory(history_id=1000))

        assert result.outcome is SyncOutcome.BOOTSTRAPPED
        assert result.checkpoint.history_id == "1000"
        assert authed_mailbox.checkpoint.current().history_id == "1000"
        assert change_log.requests == []

    @pytest.mark.asyncio
    async def test_malformed_discarded(self, make_engine, change_log_factory, synced_mailbox):
        """Test an undecodable payload changes nothing."""
        change_log = change_log_factory()
        engine = make_engine(change_log)

        result = await engine.process_notification({'message': {'data': '***'}})

        assert result.outcome is SyncOutcome.DISCARDED
        assert change_log.requests == []
        assert synced_mailbox.checkpoint.current().history_id == "1000"

    @pytest.mark.asyncio
    async def test_other_mailbox_discarded(
        self, make_engine, change_log_factory, notification_factory, synced_mailbox
    ):
        """Test a notification for another address is ignored."""
        change_log = change_log_factory()
        engine = make_engine(change_log)

        result = await engine.process_notification(
            notification_factory(history_id=1005, email_address="other@example.com")
        )

        assert result.outcome is SyncOutcome.DISCARDED
        assert change_log.requests == []

    @pytest.mark.asyncio
    async def test_old_notification_is_empty(
        self, make_engine, change_log_factory, notification_factory, synced_mailbox
    ):
        """Test a notification at or before the checkpoint fetches nothing."""
        change_log = change_log_factory()
        engine = make_engine(change_log)

        for history_id in (1000, 990):
            result = await engine.process_notification(notification_factory(history_id=history_id))
            assert result.outcome is SyncOutcome.EMPTY

        assert change_log.requests == []
        assert synced_mailbox.checkpoint.current().history_id == "1000"


class TestReplay:
    """Change-log replay into label events."""

    @pytest.mark.asyncio
    async def test_empty_batch_keeps_checkpoint(
        self, make_engine, change_log_factory, notification_factory, synced_mailbox,
        recorded_events
    ):
        """Test an empty change log leaves the checkpoint and dispatches nothing."""
        change_log = change_log_factory([[]])
        engine = make_engine(change_log)

        result = await engine.process_notification(notification_factory(history_id=1005))

        assert result.outcome is SyncOutcome.EMPTY
        assert synced_mailbox.checkpoint.current().history_id == "1000"
        assert recorded_events == []
        assert change_log.requests[0].filter_args == {'startHistoryId': '1000'}

    @pytest.mark.asyncio
    async def test_subscribed_label_dispatched(
        self, make_engine, change_log_factory, notification_factory, history_record_factory,
        synced_mailbox, recorded_events
    ):
        """Test a subscribed label addition yields one event and advances the checkpoint."""
        engine = make_engine(change_log_factory([
            [history_record_factory(1003, labels_added=[("m1", ["Label_1"])])]
        ]))

        result = await engine.process_notification(notification_factory(history_id=1005))

        assert result.outcome is SyncOutcome.SYNCED
        assert result.events == [DomainEvent("Label_1", "m1")]
        assert recorded_events == [DomainEvent("Label_1", "m1")]
        assert synced_mailbox.checkpoint.current().history_id == "1005"
        assert engine.state is SyncState.IDLE

    @pytest.mark.asyncio
    async def test_checkpoint_follows_each_notification(
        self, make_engine, change_log_factory, notification_factory, history_record_factory,
        synced_mailbox, recorded_events
    ):
        """Test successive notifications each resume from the previous notified id."""
        change_log = change_log_factory([[
            history_record_factory(1003, labels_added=[("m1", ["Label_1"])]),
            history_record_factory(1007, labels_added=[("m2", ["Label_1"])]),
            history_record_factory(1012, labels_added=[("m3", ["Label_1"])]),
        ]])
        engine = make_engine(change_log)

        for history_id, previous in ((1003, "1000"), (1007, "1003"), (1012, "1007")):
            result = await engine.process_notification(notification_factory(history_id=history_id))

            assert result.outcome is SyncOutcome.SYNCED
            assert change_log.requests[-1].filter_args == {'startHistoryId': previous}
            assert synced_mailbox.checkpoint.current().history_id == str(history_id)

        assert recorded_events == [
            DomainEvent("Label_1", "m1"),
            DomainEvent("Label_1", "m2"),
            DomainEvent("Label_1", "m3"),
        ]

    @pytest.mark.asyncio
    async def test_double_subscription_dispatches_once(
        self, make_engine, change_log_factory, notification_factory, history_record_factory,
        synced_mailbox, recorded_events
    ):
        """Test subscribing twice still yields exactly one event per addition."""
        synced_mailbox.subscriptions.subscribe("Label_1")
        engine = make_engine(change_log_factory([
            [history_record_factory(1001, labels_added=[("m1", ["Label_1"])])]
        ]))

        await engine.process_notification(notification_factory(history_id=1001))

        assert recorded_events == [DomainEvent("Label_1", "m1")]

    @pytest.mark.asyncio
    async def test_no_subscriptions(
        self, make_engine, change_log_factory, notification_factory, history_record_factory,
        authed_mailbox, recorded_events
    ):
        """Test an empty registry dispatches nothing but still advances."""
        authed_mailbox.checkpoint.advance("1000")
        engine = make_engine(change_log_factory([
            [history_record_factory(1001, labels_added=[("m1", ["Label_1", "STARRED"])])]
        ]))

        result = await engine.process_notification(notification_factory(history_id=1001))

        assert result.outcome is SyncOutcome.SYNCED
        assert recorded_events == []
        assert authed_mailbox.checkpoint.current().history_id == "1001"

    @pytest.mark.asyncio
    async def test_multi_label_fan_out(
        self, make_engine, change_log_factory, notification_factory, history_record_factory,
        synced_mailbox, recorded_events
    ):
        """Test each subscribed label of an addition yields its own event, in order."""
        synced_mailbox.subscriptions.subscribe("Label_2")
        engine = make_engine(change_log_factory([
            [
                history_record_factory(
                    1001, labels_added=[("m1", ["Label_1", "UNREAD", "Label_2"])]
                ),
                history_record_factory(1002, labels_added=[("m2", ["Label_2"])]),
            ]
        ]))

        await engine.process_notification(notification_factory(history_id=1002))

        assert recorded_events == [
            DomainEvent("Label_1", "m1"),
            DomainEvent("Label_2", "m1"),
            DomainEvent("Label_2", "m2"),
        ]

    @pytest.mark.asyncio
    async def test_only_label_additions_dispatched(
        self, make_engine, change_log_factory, notification_factory, history_record_factory,
        synced_mailbox, recorded_events
    ):
        """Test removals and new messages are not label events."""
        engine = make_engine(change_log_factory([
            [
                history_record_factory(1001, labels_removed=[("m1", ["Label_1"])]),
                history_record_factory(1002, messages_added=[("m2", ["Label_1"])]),
            ]
        ]))

        result = await engine.process_notification(notification_factory(history_id=1002))

        assert result.outcome is SyncOutcome.SYNCED
        assert recorded_events == []

    @pytest.mark.asyncio
    async def test_records_after_notification_deferred(
        self, make_engine, change_log_factory, notification_factory, history_record_factory,
        synced_mailbox, recorded_events
    ):
        """Test records newer than the notified ID wait for the next notification."""
        change_log = change_log_factory([
            [
                history_record_factory(1003, labels_added=[("m1", ["Label_1"])]),
                history_record_factory(1007, labels_added=[("m2", ["Label_1"])]),
            ]
        ])
        engine = make_engine(change_log)

        await engine.process_notification(notification_factory(history_id=1005))

        assert recorded_events == [DomainEvent("Label_1", "m1")]
        assert synced_mailbox.checkpoint.current().history_id == "1005"

        await engine.process_notification(notification_factory(history_id=1007))

        assert recorded_events == [DomainEvent("Label_1", "m1"), DomainEvent("Label_1", "m2")]
        assert change_log.requests[-1].filter_args == {'startHistoryId': '1005'}

    @pytest.mark.asyncio
    async def test_follows_every_history_page(
        self, make_engine, change_log_factory, notification_factory, history_record_factory,
        synced_mailbox, recorded_events
    ):
        """Test all pages are fetched with the same start ID and verbatim tokens."""
        change_log = change_log_factory([
            [history_record_factory(1001, labels_added=[("m1", ["Label_1"])])],
            [history_record_factory(1002, labels_added=[("m2", ["Label_1"])])],
            [history_record_factory(1003, labels_added=[("m3", ["Label_1"])])],
        ])
        engine = make_engine(change_log)

        await engine.process_notification(notification_factory(history_id=1003))

        assert [e.message_id for e in recorded_events] == ["m1", "m2", "m3"]
        assert [r.page_token for r in change_log.requests] == [None, "page-1", "page-2"]
        assert all(r.filter_args == {'startHistoryId': '1000'} for r in change_log.requests)

    @pytest.mark.asyncio
    async def test_token_fetched_before_each_page(
        self, make_engine, change_log_factory, notification_factory, history_record_factory,
        synced_mailbox, auth_token
    ):
        """Test the token source is consulted for every page."""
        calls = []

        async def token_source():
            calls.append(len(calls))
            return auth_token

        change_log = change_log_factory([[history_record_factory(1001)], []])
        engine = make_engine(change_log, token_source=token_source)

        await engine.process_notification(notification_factory(history_id=1001))

        assert len(calls) == 2
        assert change_log.tokens == [auth_token, auth_token]

    @pytest.mark.asyncio
    async def test_concurrent_notifications_serialized(
        self, make_engine, change_log_factory, notification_factory, history_record_factory,
        synced_mailbox, recorded_events
    ):
        """Test two deliveries of the same notification dispatch once."""
        engine = make_engine(change_log_factory([
            [history_record_factory(1001, labels_added=[("m1", ["Label_1"])])]
        ]))
        body = notification_factory(history_id=1001)

        results = await asyncio.gather(
            engine.process_notification(body),
            engine.process_notification(body),
        )

        assert sorted(r.outcome.value for r in results) == ["empty", "synced"]
        assert recorded_events == [DomainEvent("Label_1", "m1")]


class TestFailures:
    """Errors surfaced while syncing."""

    @pytest.mark.asyncio
    async def test_checkpoint_expired_propagates(
        self, make_engine, change_log_factory, notification_factory, synced_mailbox
    ):
        """Test an expired checkpoint reaches the caller and nothing is stored."""
        engine = make_engine(change_log_factory(error=CheckpointExpired("me", "1000")))

        with pytest.raises(CheckpointExpired):
            await engine.process_notification(notification_factory(history_id=1005))

        assert synced_mailbox.checkpoint.current().history_id == "1000"
        assert engine.state is SyncState.IDLE

    @pytest.mark.asyncio
    async def test_missing_token(
        self, temp_db, dispatcher, change_log_factory, notification_factory
    ):
        """Test syncing without a stored credential raises Unauthenticated."""
        mailbox = Mailbox(temp_db, "no-token")
        mailbox.checkpoint.advance("1000")
        engine = SyncEngine(mailbox, change_log_factory(), dispatcher)

        with pytest.raises(Unauthenticated):
            await engine.process_notification(notification_factory(history_id=1005))

        assert mailbox.checkpoint.current().history_id == "1000"

    @pytest.fixture
    def failing_batch(self, change_log_factory, history_record_factory, synced_mailbox, event_bus):
        """Batch where Label_1 delivery fails and Label_2 succeeds."""
        synced_mailbox.subscriptions.subscribe("Label_2")
        delivered = []

        def broken(event):
            raise ConnectionError("bus down")

        event_bus.listen("Label_1", broken)
        event_bus.listen("Label_2", delivered.append)

        change_log = change_log_factory([
            [
                history_record_factory(1001, labels_added=[("m1", ["Label_1"])]),
                history_record_factory(1002, labels_added=[("m2", ["Label_2"])]),
            ]
        ])
        return change_log, delivered

    @pytest.mark.asyncio
    async def test_unconditional_advances_then_raises(
        self, make_engine, failing_batch, notification_factory, synced_mailbox
    ):
        """Test the whole batch is iterated and the checkpoint advanced before raising."""
        change_log, delivered = failing_batch
        engine = make_engine(change_log, AdvancePolicy.UNCONDITIONAL)

        with pytest.raises(DispatchFailed) as exc_info:
            await engine.process_notification(notification_factory(history_id=1002))

        assert [event for event, _ in exc_info.value.failures] == [DomainEvent("Label_1", "m1")]
        assert exc_info.value.checkpoint.history_id == "1002"
        assert delivered == [DomainEvent("Label_2", "m2")]
        assert synced_mailbox.checkpoint.current().history_id == "1002"

    @pytest.mark.asyncio
    async def test_require_success_keeps_checkpoint(
        self, make_engine, failing_batch, notification_factory, synced_mailbox
    ):
        """Test the first failure stops replay and the checkpoint stays put."""
        change_log, delivered = failing_batch
        engine = make_engine(change_log, AdvancePolicy.REQUIRE_DISPATCH_SUCCESS)

        with pytest.raises(DispatchFailed) as exc_info:
            await engine.process_notification(notification_factory(history_id=1002))

        assert exc_info.value.checkpoint is None
        assert delivered == []
        assert synced_mailbox.checkpoint.current().history_id == "1000"
        assert engine.state is SyncState.IDLE
