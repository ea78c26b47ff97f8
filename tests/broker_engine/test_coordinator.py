"""
Broker Execution Coordinator Tests.

============================================================
PURPOSE
============================================================
End-to-end behavior of the coordinator over in-memory
repositories, FakeRedis and mock exchange clients.

TEST CATEGORIES:
- Broker registration / update / deletion
- Order list submission
- Cached account views

============================================================
"""

from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from broker_engine.types import (
    BrokerStatus,
    CredentialError,
    Exchange,
    ExchangeOrderType,
    Market,
    NotFoundError,
    OrderGroup,
    OrderIntent,
    OrderSide,
    OrderStatus,
    OrderType,
    SubOrderList,
    TimeInForce,
    UnrecordedOrderError,
    UpstreamError,
    ValidationError,
)
from database.engine import DatabasePersistenceError


USER = "user-1"


async def _register(coordinator, label="main", api_key="key-0001", api_secret="secret-0001", user=USER):
    return await coordinator.register_broker(user, Exchange.BINANCE, label, api_key, api_secret)


def _stop_market_group():
    return OrderGroup(
        market=Market.SPOT,
        symbol="BTCUSDT",
        batch_orders=[OrderIntent(
            order_id="entry-1",
            side=OrderSide.BUY,
            order_type=OrderType.STOP_LOSS_MARKET,
            quantity=Decimal("0.01"),
            stop_price=Decimal("50000"),
        )],
    )


# ============================================================
# BROKER REGISTRATION
# ============================================================

class TestRegisterBroker:

    @pytest.mark.asyncio
    async def test_register_stores_permission_details(self, coordinator, broker_repository, spot_client):
        broker = await _register(coordinator)

        assert broker.status == BrokerStatus.OK
        assert broker.ip_restricted is True
        assert broker.credentials_created_at == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert broker.broker_id in broker_repository.brokers
        assert spot_client.calls["get_api_key_permissions"] == 1
        assert spot_client.closed

    @pytest.mark.asyncio
    async def test_futures_disabled_rejected_without_row(self, coordinator, broker_repository, mock_config):
        mock_config.permissions = replace(mock_config.permissions, enable_futures=False)

        with pytest.raises(CredentialError, match="enableFutures"):
            await _register(coordinator)

        assert broker_repository.brokers == {}

    @pytest.mark.asyncio
    async def test_portfolio_margin_must_be_explicitly_disabled(self, coordinator, broker_repository, mock_config):
        mock_config.permissions = replace(mock_config.permissions, enable_portfolio_margin_trading=None)

        with pytest.raises(CredentialError):
            await _register(coordinator)

        assert broker_repository.brokers == {}

    @pytest.mark.asyncio
    async def test_exchange_auth_failure_propagates(self, coordinator, broker_repository, mock_config):
        mock_config.errors["get_api_key_permissions"] = CredentialError("Invalid API key", code="AUT_INVALID_API_KEY")

        with pytest.raises(CredentialError, match="Invalid API key"):
            await _register(coordinator)

        assert broker_repository.brokers == {}

    @pytest.mark.asyncio
    async def test_unsupported_exchange_makes_no_call(self, coordinator, spot_client):
        with pytest.raises(ValidationError, match="Unsupported exchange: bybit"):
            await coordinator.register_broker(USER, Exchange.BYBIT, "main", "k", "s")

        assert sum(spot_client.calls.values()) == 0

    @pytest.mark.asyncio
    async def test_duplicate_credentials_rejected_before_exchange(self, coordinator, spot_client):
        await _register(coordinator)

        with pytest.raises(ValidationError, match="already registered"):
            await _register(coordinator, label="other", user="user-2")

        assert spot_client.calls["get_api_key_permissions"] == 1

    @pytest.mark.asyncio
    async def test_duplicate_label_rejected(self, coordinator):
        await _register(coordinator)

        with pytest.raises(ValidationError, match="Label already in use"):
            await _register(coordinator, api_key="key-0002", api_secret="secret-0002")

    @pytest.mark.asyncio
    async def test_same_label_for_different_users(self, coordinator):
        await _register(coordinator)
        other = await _register(coordinator, api_key="key-0002", api_secret="secret-0002", user="user-2")

        assert other.label == "main"


# ============================================================
# BROKER UPDATE / DELETE
# ============================================================

class TestUpdateBroker:

    @pytest.mark.asyncio
    async def test_label_only_update_skips_exchange(self, coordinator, broker_repository, spot_client):
        broker = await _register(coordinator)
        calls_before = dict(spot_client.calls)

        updated = await coordinator.update_broker(
            USER, broker.broker_id, Exchange.BINANCE, "renamed", "key-0001", "secret-0001",
        )

        stored = broker_repository.brokers[broker.broker_id]
        assert updated.label == stored.label == "renamed"
        assert stored.api_key == broker.api_key
        assert stored.api_secret == broker.api_secret
        assert stored.status == broker.status
        assert stored.credentials_created_at == broker.credentials_created_at
        assert dict(spot_client.calls) == calls_before

    @pytest.mark.asyncio
    async def test_rotation_revalidates(self, coordinator, broker_repository, mock_config, spot_client):
        broker = await _register(coordinator)
        issued = datetime(2024, 5, 1, tzinfo=timezone.utc)
        mock_config.permissions = replace(mock_config.permissions, ip_restricted=False, created_at=issued)

        await coordinator.update_broker(
            USER, broker.broker_id, Exchange.BINANCE, "main", "key-0002", "secret-0002",
        )

        stored = broker_repository.brokers[broker.broker_id]
        assert stored.api_key == "key-0002"
        assert stored.ip_restricted is False
        assert stored.credentials_created_at == issued
        assert spot_client.calls["get_api_key_permissions"] == 2

    @pytest.mark.asyncio
    async def test_failed_rotation_leaves_broker_untouched(self, coordinator, broker_repository, mock_config):
        broker = await _register(coordinator)
        mock_config.permissions = replace(mock_config.permissions, enable_reading=False)

        with pytest.raises(CredentialError):
            await coordinator.update_broker(
                USER, broker.broker_id, Exchange.BINANCE, "renamed", "key-0002", "secret-0002",
            )

        stored = broker_repository.brokers[broker.broker_id]
        assert stored.label == "main"
        assert stored.api_key == "key-0001"

    @pytest.mark.asyncio
    async def test_other_users_broker_not_found(self, coordinator):
        broker = await _register(coordinator)

        with pytest.raises(NotFoundError):
            await coordinator.update_broker(
                "intruder", broker.broker_id, Exchange.BINANCE, "x", "key-0001", "secret-0001",
            )


class TestDeleteBroker:

    @pytest.mark.asyncio
    async def test_delete_cascades_to_orders(self, coordinator, order_repository):
        broker = await _register(coordinator)
        await coordinator.submit_order_groups(USER, broker.broker_id, [_stop_market_group()])

        await coordinator.delete_broker(USER, broker.broker_id)

        assert order_repository.records == []
        with pytest.raises(NotFoundError):
            await coordinator.get_broker(USER, broker.broker_id)

    @pytest.mark.asyncio
    async def test_delete_unknown(self, coordinator):
        with pytest.raises(NotFoundError):
            await coordinator.delete_broker(USER, "missing")


# ============================================================
# ORDER SUBMISSION
# ============================================================

class TestSubmitOrderGroups:

    @pytest.mark.asyncio
    async def test_spot_stop_market_end_to_end(self, coordinator, order_repository, spot_client, mock_config):
        mock_config.prices["BTCUSDT"] = Decimal("49000")
        broker = await _register(coordinator)

        records = await coordinator.submit_order_groups(USER, broker.broker_id, [_stop_market_group()])

        assert len(spot_client.submitted) == 1
        request = spot_client.submitted[0]
        assert request.order_type == ExchangeOrderType.STOP_LOSS
        assert request.stop_price == Decimal("50000")
        assert request.price is None
        assert request.time_in_force is None
        assert request.client_order_id == "entry-1"

        assert len(records) == 1
        assert records[0].status == OrderStatus.PENDING
        assert records[0].exchange_order_id is not None
        assert order_repository.insert_calls == 1
        assert [r.order_id for r in order_repository.records] == ["entry-1"]
        assert spot_client.closed

    @pytest.mark.asyncio
    async def test_filled_submission_marks_first_leg(self, coordinator, mock_config):
        mock_config.fill_status = "FILLED"
        broker = await _register(coordinator)

        records = await coordinator.submit_order_groups(USER, broker.broker_id, [_stop_market_group()])

        assert records[0].status == OrderStatus.FILLED

    @pytest.mark.asyncio
    async def test_limit_leg_sends_price_and_gtc(self, coordinator, spot_client):
        broker = await _register(coordinator)
        group = OrderGroup(
            market=Market.SPOT,
            symbol="BTCUSDT",
            batch_orders=[OrderIntent(
                order_id="limit-1",
                side=OrderSide.SELL,
                order_type=OrderType.LIMIT,
                quantity=Decimal("1"),
                price=Decimal("60000"),
            )],
        )

        await coordinator.submit_order_groups(USER, broker.broker_id, [group])

        request = spot_client.submitted[0]
        assert request.order_type == ExchangeOrderType.LIMIT
        assert request.price == Decimal("60000")
        assert request.stop_price is None
        assert request.time_in_force == TimeInForce.GTC

    @pytest.mark.asyncio
    async def test_futures_group_uses_futures_client(self, coordinator, spot_client, futures_client):
        broker = await _register(coordinator)
        group = OrderGroup(
            market=Market.FUTURES,
            symbol="BTCUSDT",
            batch_orders=[OrderIntent(
                order_id="fut-1",
                side=OrderSide.SELL,
                order_type=OrderType.STOP_LOSS_LIMIT,
                quantity=Decimal("1"),
                price=Decimal("45000"),
                stop_price=Decimal("45500"),
            )],
        )

        await coordinator.submit_order_groups(USER, broker.broker_id, [group])

        assert spot_client.submitted == []
        assert futures_client.submitted[0].order_type == ExchangeOrderType.STOP
        assert futures_client.submitted[0].time_in_force == TimeInForce.GTC

    @pytest.mark.asyncio
    async def test_whole_tree_persisted_one_submission(self, coordinator, order_repository, spot_client):
        broker = await _register(coordinator)
        group = _stop_market_group()
        group.sub_order_lists = [SubOrderList([OrderIntent(
            order_id="tp-1",
            side=OrderSide.SELL,
            order_type=OrderType.LIMIT,
            quantity=Decimal("0.01"),
            price=Decimal("55000"),
            parent_order_id="entry-1",
        )])]
        second = OrderGroup(
            market=Market.FUTURES,
            symbol="ETHUSDT",
            batch_orders=[OrderIntent(
                order_id="eth-1", side=OrderSide.BUY, order_type=OrderType.MARKET, quantity=Decimal("1"),
            )],
        )

        records = await coordinator.submit_order_groups(USER, broker.broker_id, [group, second])

        assert [r.order_id for r in records] == ["entry-1", "tp-1", "eth-1"]
        assert len(spot_client.submitted) == 1
        assert len(order_repository.records) == 3

    @pytest.mark.asyncio
    async def test_invalid_tree_rejected_before_io(self, coordinator, spot_client, order_repository):
        broker = await _register(coordinator)
        calls_before = dict(spot_client.calls)
        group = _stop_market_group()
        group.batch_orders[0].stop_price = None

        with pytest.raises(ValidationError):
            await coordinator.submit_order_groups(USER, broker.broker_id, [group])

        assert dict(spot_client.calls) == calls_before
        assert order_repository.records == []

    @pytest.mark.asyncio
    async def test_unknown_broker(self, coordinator):
        with pytest.raises(NotFoundError):
            await coordinator.submit_order_groups(USER, "missing", [_stop_market_group()])

    @pytest.mark.asyncio
    async def test_submission_failure_persists_nothing(self, coordinator, order_repository, mock_config):
        broker = await _register(coordinator)
        mock_config.errors["submit_order"] = UpstreamError("Order rejected", code="EXC_ORDER_REJECTED")

        with pytest.raises(UpstreamError):
            await coordinator.submit_order_groups(USER, broker.broker_id, [_stop_market_group()])

        assert order_repository.records == []

    @pytest.mark.asyncio
    async def test_price_failure_submits_nothing(self, coordinator, order_repository, spot_client, mock_config):
        broker = await _register(coordinator)
        mock_config.errors["get_price"] = UpstreamError("timeout", code="TMO_READ", is_retryable=True)

        with pytest.raises(UpstreamError):
            await coordinator.submit_order_groups(USER, broker.broker_id, [_stop_market_group()])

        assert spot_client.submitted == []
        assert order_repository.records == []

    @pytest.mark.asyncio
    async def test_stored_order_id_rejected_before_io(self, coordinator, order_repository, spot_client):
        broker = await _register(coordinator)
        await coordinator.submit_order_groups(USER, broker.broker_id, [_stop_market_group()])
        calls_before = dict(spot_client.calls)

        with pytest.raises(ValidationError, match="orderId already used: entry-1"):
            await coordinator.submit_order_groups(USER, broker.broker_id, [_stop_market_group()])

        assert dict(spot_client.calls) == calls_before
        assert len(spot_client.submitted) == 1
        assert order_repository.insert_calls == 1

    @pytest.mark.asyncio
    async def test_stored_child_order_id_rejected_before_io(self, coordinator, spot_client):
        broker = await _register(coordinator)
        await coordinator.submit_order_groups(USER, broker.broker_id, [_stop_market_group()])
        group = _stop_market_group()
        group.batch_orders[0].order_id = "entry-2"
        group.sub_order_lists = [SubOrderList(batch_orders=[OrderIntent(
            order_id="entry-1",
            side=OrderSide.SELL,
            order_type=OrderType.LIMIT,
            quantity=Decimal("0.01"),
            price=Decimal("55000"),
            parent_order_id="entry-2",
        )])]

        with pytest.raises(ValidationError, match="entry-1"):
            await coordinator.submit_order_groups(USER, broker.broker_id, [group])

        assert len(spot_client.submitted) == 1

    @pytest.mark.asyncio
    async def test_persistence_failure_after_submission_reports_exchange_id(
        self, coordinator, order_repository, spot_client,
    ):
        broker = await _register(coordinator)
        order_repository.fail_with = DatabasePersistenceError("order insert failed: connection reset")

        with pytest.raises(UnrecordedOrderError) as exc_info:
            await coordinator.submit_order_groups(USER, broker.broker_id, [_stop_market_group()])

        error = exc_info.value
        assert not isinstance(error, ValidationError)
        assert error.order_id == "entry-1"
        assert error.exchange_order_id
        assert error.exchange_order_id in str(error)
        assert isinstance(error.__cause__, DatabasePersistenceError)
        assert len(spot_client.submitted) == 1
        assert order_repository.records == []

    @pytest.mark.asyncio
    async def test_list_orders(self, coordinator):
        broker = await _register(coordinator)
        await coordinator.submit_order_groups(USER, broker.broker_id, [_stop_market_group()])

        orders = await coordinator.list_orders(USER, broker.broker_id)

        assert [o.order_id for o in orders] == ["entry-1"]


# ============================================================
# ACCOUNT VIEWS
# ============================================================

class TestAccountViews:

    @pytest.mark.asyncio
    async def test_holdings_cached(self, coordinator, spot_client, mock_config):
        mock_config.account = {"balances": [{"asset": "BTC", "free": "1", "locked": "0"}]}
        broker = await _register(coordinator)

        first = await coordinator.get_holdings(USER, broker.broker_id)
        second = await coordinator.get_holdings(USER, broker.broker_id)

        assert first == second
        assert first[0].symbol == "BTC"
        assert spot_client.calls["get_account"] == 1

    @pytest.mark.asyncio
    async def test_positions_cached(self, coordinator, futures_client, mock_config):
        mock_config.positions = [{
            "symbol": "BTCUSDT", "positionAmt": "0.5", "positionSide": "LONG",
            "liquidationPrice": "30000", "unRealizedProfit": "10", "notional": "25000",
            "entryPrice": "49980", "markPrice": "50000", "updateTime": 1718454600000,
        }]
        broker = await _register(coordinator)

        first = await coordinator.get_positions(USER, broker.broker_id)
        second = await coordinator.get_positions(USER, broker.broker_id)

        assert first == second
        assert first[0].position_side == "long"
        assert futures_client.calls["get_positions"] == 1

    @pytest.mark.asyncio
    async def test_open_orders_cached_per_market(self, coordinator, spot_client, futures_client):
        broker = await _register(coordinator)

        await coordinator.get_open_orders(USER, broker.broker_id, Market.SPOT)
        await coordinator.get_open_orders(USER, broker.broker_id, Market.SPOT)
        await coordinator.get_open_orders(USER, broker.broker_id, Market.FUTURES)

        assert spot_client.calls["get_open_orders"] == 1
        assert futures_client.calls["get_open_orders"] == 1

    @pytest.mark.asyncio
    async def test_balance_history(self, coordinator, mock_config):
        mock_config.wallet_balances = [{"walletName": "Spot", "balance": "100"}]
        broker = await _register(coordinator)

        history = await coordinator.get_balance_history(USER, broker.broker_id, 7)

        assert len(history) == 7
        assert history[-1].date == "2024-06-15"
        assert history[-1].balance[0].balance == 100.0
        assert all(entry.balance is None for entry in history[:-1])

    @pytest.mark.asyncio
    async def test_balance_days_checked_before_lookup(self, coordinator):
        with pytest.raises(ValidationError):
            await coordinator.get_balance_history(USER, "missing", 0)

    @pytest.mark.asyncio
    async def test_views_scoped_to_owner(self, coordinator):
        broker = await _register(coordinator)

        with pytest.raises(NotFoundError):
            await coordinator.get_holdings("intruder", broker.broker_id)

    @pytest.mark.asyncio
    async def test_upstream_failure_not_cached(self, coordinator, spot_client, mock_config):
        broker = await _register(coordinator)
        mock_config.errors["get_account"] = UpstreamError("down", code="NET_CONNECTION_FAILED")

        with pytest.raises(UpstreamError):
            await coordinator.get_holdings(USER, broker.broker_id)

        del mock_config.errors["get_account"]
        assert await coordinator.get_holdings(USER, broker.broker_id) == []
        assert spot_client.calls["get_account"] == 2
