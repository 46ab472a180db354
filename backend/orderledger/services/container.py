# Overview: Wires the core services together around one injected session.

from __future__ import annotations

from dataclasses import dataclass

from ..models import Customer, Supplier
from .fulfillment_service import FulfillmentService
from .ledger_service import StockLedger
from .order_service import OrderService
from .party_service import PartyRegistry
from .payment_service import PaymentService


@dataclass
class Services:
    ledger: StockLedger
    payments: PaymentService
    fulfillment: FulfillmentService
    orders: OrderService
    suppliers: PartyRegistry
    customers: PartyRegistry


def build_services(session, config, notifier=None) -> Services:
    """
    Build every core service for one unit of work.

    config is any mapping with the Config keys (a Flask app.config works).
    """
    lock_timeout = float(config.get("LOCK_TIMEOUT_SECONDS", 5))
    default_warehouse = config.get("DEFAULT_WAREHOUSE", "MAIN")

    ledger = StockLedger(
        session,
        default_warehouse=default_warehouse,
        allow_negative_stock=bool(config.get("ALLOW_NEGATIVE_STOCK", False)),
        notifier=notifier,
    )
    payments = PaymentService(
        session,
        overpayment_policy=config.get("OVERPAYMENT_POLICY", "strict"),
        lock_timeout=lock_timeout,
    )
    fulfillment = FulfillmentService(session, ledger, lock_timeout=lock_timeout, notifier=notifier)
    orders = OrderService(
        session,
        ledger=ledger,
        payments=payments,
        lock_timeout=lock_timeout,
        default_warehouse=default_warehouse,
        page_size_default=int(config.get("PAGE_SIZE_DEFAULT", 10)),
        page_size_max=int(config.get("PAGE_SIZE_MAX", 100)),
        notifier=notifier,
    )
    return Services(
        ledger=ledger,
        payments=payments,
        fulfillment=fulfillment,
        orders=orders,
        suppliers=PartyRegistry(session, Supplier),
        customers=PartyRegistry(session, Customer),
    )


def services_for_request() -> Services:
    """Services bound to the Flask-SQLAlchemy request session."""
    from flask import current_app

    from ..extensions import db
    from .notification_service import get_dispatcher

    return build_services(db.session, current_app.config, get_dispatcher(current_app))
