"""
Broker Engine - Broker Execution Coordinator.

============================================================
PURPOSE
============================================================
Main entry point of the Broker Engine.

Owns the broker lifecycle, the order submission pipeline and
the cached read path. Every collaborator is injected.

============================================================
SUBMISSION WORKFLOW
============================================================
1. Validate the order tree (no I/O)
2. Resolve the broker for the caller and reject order ids
   that are already stored
3. Build the market client for the first group
4. Fetch the live price of the first group's symbol
5. Translate the first leg's order type
6. Submit the first leg
7. Flatten the whole tree
8. Persist every record in one insert

Strictly sequential, no retries. An exchange failure raises
before anything is persisted. A persistence failure after
submission raises UnrecordedOrderError carrying the exchange
order id.

============================================================
CREDENTIAL CHECK
============================================================
A key is accepted only if the exchange reports reading, spot
and margin trading, and futures trading enabled, with
portfolio margin trading disabled.

============================================================
"""

import logging
from typing import List, Optional

from core.clock import ClockProtocol, SystemClock
from database.engine import DatabasePersistenceError

from .balance_history import BalanceHistoryAssembler
from .cache import AccountStateCache
from .clients.base import SubmitOrderRequest
from .clients.binance import mask_key
from .clients.factory import ClientFactory
from .flattener import flatten
from .projections import (
    project_holdings,
    project_open_orders,
    project_positions,
    project_wallet_balances,
)
from .repository import BrokerRepository, OrderRepository
from .snapshots import (
    DailyBalance,
    Holding,
    OpenOrder,
    Position,
    WalletBalance,
    HOLDINGS,
    OPEN_ORDERS,
    POSITIONS,
)
from .translator import translate
from .types import (
    ApiKeyPermissions,
    Broker,
    BrokerStatus,
    CredentialError,
    Exchange,
    Market,
    NotFoundError,
    OrderGroup,
    OrderIntent,
    OrderRecord,
    TimeInForce,
    UnrecordedOrderError,
    ValidationError,
)
from .validation import validate_order_groups


logger = logging.getLogger(__name__)


class BrokerExecutionCoordinator:
    """
    Coordinates brokers, order submission and account views.

    AUTHORITY BOUNDARIES:
    - CAN: Validate credentials, submit one leg per request, persist
      the submitted tree
    - MUST NOT: Retry exchange calls
    - MUST NOT: Touch brokers that belong to another user
    """

    def __init__(
        self,
        broker_repository: BrokerRepository,
        order_repository: OrderRepository,
        client_factory: ClientFactory,
        cache: AccountStateCache,
        clock: Optional[ClockProtocol] = None,
    ):
        """
        Initialize coordinator.

        Args:
            broker_repository: Broker persistence
            order_repository: Order persistence
            client_factory: Builds exchange clients from credentials
            cache: Account state cache
            clock: Time source (defaults to system clock)
        """
        self._brokers = broker_repository
        self._orders = order_repository
        self._clients = client_factory
        self._cache = cache
        self._clock = clock or SystemClock()
        self._balance_history = BalanceHistoryAssembler(cache, self._clock)

    # --------------------------------------------------------
    # BROKERS
    # --------------------------------------------------------

    async def register_broker(
        self,
        user_id: str,
        exchange: Exchange,
        label: str,
        api_key: str,
        api_secret: str,
    ) -> Broker:
        """
        Validate credentials with the exchange and store a new broker.

        Raises:
            ValidationError: Unsupported exchange, duplicate credentials or label
            CredentialError: Key lacks required permissions
        """
        self._require_supported(exchange)
        self._require_label(label)

        if await self._brokers.find_by_credentials(api_key, api_secret):
            raise ValidationError("These credentials are already registered")
        if await self._brokers.find_by_label(user_id, label):
            raise ValidationError(f"Label already in use: {label}")

        permissions = await self._check_credentials(exchange, api_key, api_secret)

        broker = await self._brokers.add(Broker(
            broker_id="",
            user_id=user_id,
            exchange=exchange,
            label=label,
            api_key=api_key,
            api_secret=api_secret,
            status=BrokerStatus.OK,
            ip_restricted=permissions.ip_restricted,
            credentials_created_at=permissions.created_at,
        ))

        logger.info(
            f"Broker registered: {broker.broker_id} "
            f"({exchange.value}, key {mask_key(api_key)}) for user {user_id}"
        )
        return broker

    async def update_broker(
        self,
        user_id: str,
        broker_id: str,
        exchange: Exchange,
        label: str,
        api_key: str,
        api_secret: str,
    ) -> Broker:
        """
        Update a broker.

        Unchanged credentials only relabel the broker. Changed
        credentials are re-validated before anything is written.
        """
        broker = await self._require_broker(user_id, broker_id)
        self._require_label(label)

        if label != broker.label:
            other = await self._brokers.find_by_label(user_id, label)
            if other and other.broker_id != broker_id:
                raise ValidationError(f"Label already in use: {label}")

        if broker.has_same_credentials(exchange, api_key, api_secret):
            updated = await self._brokers.update_label(broker_id, user_id, label)
            logger.info(f"Broker relabelled: {broker_id}")
            return updated

        self._require_supported(exchange)

        other = await self._brokers.find_by_credentials(api_key, api_secret)
        if other and other.broker_id != broker_id:
            raise ValidationError("These credentials are already registered")

        permissions = await self._check_credentials(exchange, api_key, api_secret)

        broker.exchange = exchange
        broker.label = label
        broker.api_key = api_key
        broker.api_secret = api_secret
        broker.status = BrokerStatus.OK
        broker.ip_restricted = permissions.ip_restricted
        broker.credentials_created_at = permissions.created_at

        updated = await self._brokers.update(broker)
        logger.info(f"Broker credentials rotated: {broker_id} (key {mask_key(api_key)})")
        return updated

    async def get_broker(self, user_id: str, broker_id: str) -> Broker:
        return await self._require_broker(user_id, broker_id)

    async def list_brokers(self, user_id: str) -> List[Broker]:
        return await self._brokers.list_for_user(user_id)

    async def delete_broker(self, user_id: str, broker_id: str) -> None:
        """Delete a broker and all of its orders."""
        if not await self._brokers.delete(broker_id, user_id):
            raise NotFoundError(f"Broker not found: {broker_id}")
        logger.info(f"Broker deleted: {broker_id}")

    async def list_orders(self, user_id: str, broker_id: str) -> List[OrderRecord]:
        await self._require_broker(user_id, broker_id)
        return await self._orders.list_for_broker(broker_id)

    # --------------------------------------------------------
    # ORDER SUBMISSION
    # --------------------------------------------------------

    async def submit_order_groups(
        self,
        user_id: str,
        broker_id: str,
        order_groups: List[OrderGroup],
    ) -> List[OrderRecord]:
        """
        Submit the first leg of an order tree and persist the tree.

        Returns:
            The persisted records, in traversal order

        Raises:
            ValidationError: Malformed tree, reused order id or
                unsupported market
            NotFoundError: Broker does not resolve for the user
            CredentialError / UpstreamError: Exchange failure
            UnrecordedOrderError: Submitted but not persisted
        """
        validate_order_groups(order_groups)
        broker = await self._require_broker(user_id, broker_id)
        await self._require_new_order_ids(order_groups)

        group = order_groups[0]
        leg = group.batch_orders[0]

        client = self._clients.create(
            broker.exchange, group.market, broker.api_key, broker.api_secret,
        )

        async with client:
            current_price = await client.get_price(group.symbol)
            exchange_type = translate(
                group.market, leg.side, leg.order_type, leg.stop_price, current_price,
            )
            request = self._build_request(group, leg, exchange_type)

            logger.info(
                f"Submitting {leg.order_id}: {group.market.value} {group.symbol} "
                f"{leg.side.value} {exchange_type.value} qty={leg.quantity} "
                f"(last price {current_price})"
            )
            submission = await client.submit_order(request)

        logger.info(
            f"Order {leg.order_id} accepted as {submission.exchange_order_id} "
            f"status={submission.status}"
        )

        records = flatten(order_groups, submission, broker.broker_id, self._clock.now())
        try:
            await self._orders.add_all(records)
        except DatabasePersistenceError as e:
            logger.error(
                f"Order {leg.order_id} is live as {submission.exchange_order_id} "
                f"but was not recorded: {e}"
            )
            raise UnrecordedOrderError(
                f"Order {leg.order_id} was accepted by the exchange as "
                f"{submission.exchange_order_id} but could not be recorded",
                order_id=leg.order_id,
                exchange_order_id=submission.exchange_order_id,
            ) from e
        return records

    async def _require_new_order_ids(self, order_groups: List[OrderGroup]) -> None:
        order_ids = [leg.order_id for group in order_groups for leg in group.iter_legs()]
        taken = await self._orders.existing_ids(order_ids)
        if taken:
            raise ValidationError(f"orderId already used: {', '.join(sorted(taken))}")

    @staticmethod
    def _build_request(group: OrderGroup, leg: OrderIntent, exchange_type) -> SubmitOrderRequest:
        order_type = leg.order_type
        return SubmitOrderRequest(
            symbol=group.symbol,
            side=leg.side,
            order_type=exchange_type,
            quantity=leg.quantity,
            price=leg.price if order_type.requires_price else None,
            stop_price=leg.stop_price if order_type.requires_stop_price else None,
            time_in_force=TimeInForce.GTC if order_type.requires_price else None,
            client_order_id=leg.order_id,
        )

    # --------------------------------------------------------
    # ACCOUNT VIEWS
    # --------------------------------------------------------

    async def get_holdings(self, user_id: str, broker_id: str) -> List[Holding]:
        """Non-zero spot holdings, cached for the snapshot TTL."""
        broker = await self._require_broker(user_id, broker_id)

        async def fetch() -> List[Holding]:
            async with self._clients.create_spot(
                broker.exchange, broker.api_key, broker.api_secret,
            ) as client:
                return project_holdings(await client.get_account())

        return await self._cache.get_or_fetch(
            self._cache.keys.holdings(broker_id), fetch, HOLDINGS,
        )

    async def get_positions(self, user_id: str, broker_id: str) -> List[Position]:
        """Open futures positions, cached for the snapshot TTL."""
        broker = await self._require_broker(user_id, broker_id)

        async def fetch() -> List[Position]:
            async with self._clients.create_futures(
                broker.exchange, broker.api_key, broker.api_secret,
            ) as client:
                return project_positions(await client.get_positions())

        return await self._cache.get_or_fetch(
            self._cache.keys.positions(broker_id), fetch, POSITIONS,
        )

    async def get_open_orders(
        self,
        user_id: str,
        broker_id: str,
        market: Market,
    ) -> List[OpenOrder]:
        """Open orders of one market, cached for the snapshot TTL."""
        if not isinstance(market, Market):
            raise ValidationError(f"Unsupported market: {market!r}")
        broker = await self._require_broker(user_id, broker_id)

        async def fetch() -> List[OpenOrder]:
            async with self._clients.create(
                broker.exchange, market, broker.api_key, broker.api_secret,
            ) as client:
                return project_open_orders(market, await client.get_open_orders())

        return await self._cache.get_or_fetch(
            self._cache.keys.open_orders(broker_id, market), fetch, OPEN_ORDERS,
        )

    async def get_balance_history(
        self,
        user_id: str,
        broker_id: str,
        days: int,
    ) -> List[DailyBalance]:
        """Daily wallet balances for the last `days` UTC days, ascending."""
        self._balance_history.check_days(days)
        broker = await self._require_broker(user_id, broker_id)

        async def fetch_today() -> List[WalletBalance]:
            async with self._clients.create_spot(
                broker.exchange, broker.api_key, broker.api_secret,
            ) as client:
                return project_wallet_balances(await client.get_wallet_balances())

        return await self._balance_history.history(broker_id, days, fetch_today)

    # --------------------------------------------------------
    # HELPERS
    # --------------------------------------------------------

    async def _require_broker(self, user_id: str, broker_id: str) -> Broker:
        broker = await self._brokers.get(broker_id, user_id)
        if broker is None:
            raise NotFoundError(f"Broker not found: {broker_id}")
        return broker

    def _require_supported(self, exchange: Exchange) -> None:
        # Credentials are checked on the spot client
        if not isinstance(exchange, Exchange) or not self._clients.is_supported(exchange, Market.SPOT):
            name = exchange.value if isinstance(exchange, Exchange) else exchange
            raise ValidationError(f"Unsupported exchange: {name}")

    @staticmethod
    def _require_label(label: str) -> None:
        if not label or not label.strip():
            raise ValidationError("Label is required")

    async def _check_credentials(
        self,
        exchange: Exchange,
        api_key: str,
        api_secret: str,
    ) -> ApiKeyPermissions:
        async with self._clients.create_spot(exchange, api_key, api_secret) as client:
            permissions = await client.get_api_key_permissions()

        if not permissions.allows_trading():
            missing = ", ".join(permissions.missing_permissions())
            logger.warning(
                f"Rejected credentials for {exchange.value} key {mask_key(api_key)}: {missing}"
            )
            raise CredentialError(f"API key permissions insufficient: {missing}")

        return permissions
