"""Tests for the transaction record models and store."""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy.pool import StaticPool

from multigateway.database import (
    DatabaseManager,
    KeyedLock,
    TransactionAction,
    TransactionRecord,
    create_async_engine,
    is_memory_database,
    normalize_database_url,
)
from multigateway.status import PaymentStatus


def new_record(**overrides):
    values = dict(
        provider_name="simulator",
        amount=Decimal("100.00"),
        currency_code="USD",
        status=PaymentStatus.PENDING.value,
        refunded_amount=Decimal("0.00"),
    )
    values.update(overrides)
    return TransactionRecord(**values)


class TestTransactionRecordModel:
    """Tests for the TransactionRecord model."""

    def test_immutable_fields(self):
        record = new_record()
        record.amount = Decimal("100.00")  # same value is fine
        with pytest.raises(ValueError):
            record.amount = Decimal("99.00")
        with pytest.raises(ValueError):
            record.provider_name = "stripe"
        with pytest.raises(ValueError):
            record.currency_code = "EUR"

    def test_provider_id_is_mutable(self):
        record = new_record(provider_id="order_1")
        record.provider_id = "pay_1"
        assert record.provider_id == "pay_1"

    def test_remaining_refundable(self):
        record = new_record(refunded_amount=Decimal("40.00"))
        assert record.remaining_refundable == Decimal("60.00")

    def test_payload_round_trip(self):
        record = new_record()
        record.last_provider_payload = {"order_id": "sim_order_1", "amount": Decimal("1.50")}
        assert record.last_provider_payload == {"order_id": "sim_order_1", "amount": "1.50"}
        record.last_provider_payload = None
        assert record.last_provider_payload_json is None


class TestSqlAlchemyTransactionStore:
    """Tests for SqlAlchemyTransactionStore."""

    async def test_save_and_find(self, store):
        saved = await store.save(new_record(provider_id="sim_order_abc"))

        assert saved.internal_id is not None
        assert saved.created_at is not None
        found = await store.find_by_internal_id(saved.internal_id)
        assert found.provider_name == "simulator"
        assert found.amount == Decimal("100.00")
        assert found.payment_status is PaymentStatus.PENDING

    async def test_save_stamps_updated_at(self, store):
        saved = await store.save(new_record())
        first_update = saved.updated_at
        await asyncio.sleep(0.01)
        saved.status = PaymentStatus.ERROR.value
        resaved = await store.save(saved)

        assert resaved.updated_at > first_update
        assert (await store.find_by_internal_id(saved.internal_id)).status == "ERROR"

    async def test_find_missing(self, store):
        assert await store.find_by_internal_id("missing") is None
        assert await store.find_by_provider_id("missing") is None

    async def test_find_by_provider_id(self, store):
        saved = await store.save(new_record(provider_id="pay_123"))
        found = await store.find_by_provider_id("pay_123")
        assert found.internal_id == saved.internal_id

    async def test_locked_save_commits(self, store):
        saved = await store.save(new_record(provider_id="sim_order_abc"))

        async with store.locked(saved.internal_id) as unit:
            unit.record.provider_id = "sim_pay_abc"
            unit.record.status = PaymentStatus.SUCCESS.value
            await unit.save()
            await unit.add_history(
                TransactionAction.STATUS_QUERY.value,
                PaymentStatus.SUCCESS.value,
                previous_status=PaymentStatus.PENDING.value,
            )

        found = await store.find_by_internal_id(saved.internal_id)
        assert found.provider_id == "sim_pay_abc"
        assert found.status == "SUCCESS"
        history = await store.get_history(saved.internal_id)
        assert [h.new_status for h in history] == ["SUCCESS"]

    async def test_locked_rolls_back_on_error(self, store):
        saved = await store.save(new_record())

        with pytest.raises(RuntimeError):
            async with store.locked(saved.internal_id) as unit:
                unit.record.status = PaymentStatus.FAILED.value
                await unit.save()
                raise RuntimeError("boom")

        assert (await store.find_by_internal_id(saved.internal_id)).status == "PENDING"

    async def test_interleaved_units_on_different_records_both_commit(self, store):
        first = await store.save(new_record(provider_id="sim_order_1"))
        second = await store.save(new_record(provider_id="sim_order_2"))

        async def settle(internal_id):
            async with store.locked(internal_id) as unit:
                unit.record.status = PaymentStatus.SUCCESS.value
                await unit.save()
                await asyncio.sleep(0.02)

        await asyncio.gather(
            settle(first.internal_id),
            settle(second.internal_id),
            store.find_by_provider_id("sim_order_1"),
        )

        assert (await store.find_by_internal_id(first.internal_id)).status == "SUCCESS"
        assert (await store.find_by_internal_id(second.internal_id)).status == "SUCCESS"

    async def test_locked_missing_record(self, store):
        async with store.locked("missing") as unit:
            assert unit.record is None

    async def test_history_is_chronological(self, store):
        saved = await store.save(new_record())
        for status in ("PENDING", "PENDING_USER_ACTION", "SUCCESS"):
            await store.add_history(saved.internal_id, TransactionAction.STATUS_QUERY.value, status)

        history = await store.get_history(saved.internal_id)
        assert [h.new_status for h in history] == ["PENDING", "PENDING_USER_ACTION", "SUCCESS"]
        assert history[0].to_dict()["action"] == "status_query"


class TestKeyedLock:
    """Tests for the per-key lock."""

    async def test_same_key_is_serialized(self):
        locks = KeyedLock()
        events = []

        async def worker(name):
            async with locks.hold("txn-1"):
                events.append(f"{name}-in")
                await asyncio.sleep(0.01)
                events.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert events in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])
        assert len(locks) == 0

    async def test_different_keys_do_not_block(self):
        locks = KeyedLock()
        async with locks.hold("txn-1"):
            await asyncio.wait_for(self._enter(locks, "txn-2"), timeout=1)

    async def _enter(self, locks, key):
        async with locks.hold(key):
            return True


class TestDatabaseManager:
    """Tests for DatabaseManager setup."""

    @pytest.mark.parametrize("url,expected", [
        (None, "sqlite+aiosqlite:///./payments.db"),
        ("postgres://u:p@db/payments", "postgresql+asyncpg://u:p@db/payments"),
        ("postgresql://u:p@db/payments", "postgresql+asyncpg://u:p@db/payments"),
        ("sqlite+aiosqlite:///:memory:", "sqlite+aiosqlite:///:memory:"),
    ])
    def test_normalize_database_url(self, url, expected):
        assert normalize_database_url(url) == expected

    async def test_session_before_initialize(self):
        manager = DatabaseManager("sqlite+aiosqlite:///:memory:")
        with pytest.raises(RuntimeError):
            async with manager.session():
                pass

    @pytest.mark.parametrize("url,memory", [
        ("sqlite+aiosqlite:///:memory:", True),
        ("sqlite+aiosqlite://", True),
        ("sqlite+aiosqlite:///./payments.db", False),
        ("postgresql+asyncpg://u:p@db/payments", False),
    ])
    def test_is_memory_database(self, url, memory):
        assert is_memory_database(url) is memory

    async def test_only_memory_database_shares_one_connection(self, tmp_path):
        memory = create_async_engine("sqlite+aiosqlite:///:memory:")
        on_disk = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'payments.db'}")
        try:
            assert isinstance(memory.pool, StaticPool)
            assert not isinstance(on_disk.pool, StaticPool)
        finally:
            await memory.dispose()
            await on_disk.dispose()
