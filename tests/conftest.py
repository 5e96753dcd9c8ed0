"""
Shared fixtures: an in-memory SQLite database, a credential vault and a
fake PayPal client that serves canned pages through the real DisputePager.
"""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from dispute_mirror.adapters.paypal import DisputePager, PayPalConfig, PayPalError
from dispute_mirror.db.models import Base, PayPalAccount
from dispute_mirror.utils.crypto import CredentialVault

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)
TEST_KEY = "test-encryption-key-0123456789abcdef"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault(TEST_KEY)


@pytest.fixture
def make_account(session_factory, vault):
    """Create a PayPal account with encrypted credentials and return its id."""

    def _make(
        name: str = "Main store",
        client_id: str = "client-main",
        active: bool = True,
        last_sync_at: datetime | None = None,
        created_at: datetime | None = None,
    ) -> str:
        with session_factory() as session:
            account = PayPalAccount(
                account_name=name,
                email=f"{name.lower().replace(' ', '-')}@example.com",
                client_id=vault.encrypt(client_id),
                secret_key=vault.encrypt(f"{client_id}-secret"),
                sandbox_mode=True,
                active=active,
                last_sync_at=last_sync_at,
                created_at=created_at or NOW - timedelta(days=30),
            )
            session.add(account)
            session.commit()
            return account.id

    return _make


def dispute_record(
    dispute_id: str,
    status: str = "WAITING_FOR_SELLER_RESPONSE",
    update_time: datetime = NOW - timedelta(hours=2),
    email: str | None = "buyer@example.com",
    **extra,
) -> dict:
    """A list-endpoint dispute record as PayPal returns it."""
    buyer = {"name": "Jane Buyer"}
    if email:
        buyer["email_address"] = email
    record = {
        "dispute_id": dispute_id,
        "create_time": "2026-01-01T09:00:00.000Z",
        "update_time": update_time.strftime("%Y-%m-%dT%H:%M:%S.000Z"),
        "reason": "MERCHANDISE_OR_SERVICE_NOT_RECEIVED",
        "status": status,
        "dispute_amount": {"currency_code": "USD", "value": "25.00"},
        "dispute_life_cycle_stage": "INQUIRY",
        "dispute_channel": "INTERNAL",
        "disputed_transactions": [
            {
                "seller_transaction_id": f"TX-{dispute_id}",
                "invoice_number": f"INV-{dispute_id}",
                "gross_amount": {"currency_code": "USD", "value": "30.00"},
                "buyer": buyer,
            }
        ],
    }
    record.update(extra)
    return record


def page(items: list[dict], next_href: str | None = None) -> dict:
    links = [{"href": "https://api-m.sandbox.paypal.com/v1/customer/disputes", "rel": "self"}]
    if next_href:
        links.append({"href": next_href, "rel": "next"})
    return {"items": items, "links": links}


class FakePayPalClient:
    """Serves canned pages; entries that are exceptions are raised instead."""

    def __init__(self, pages=None, details=None, error=None, config=None):
        self.config = config or PayPalConfig(rate_limit_delay=0)
        self.pages = list(pages or [])
        self.details = details or {}
        self.error = error
        self.requests = []
        self.detail_requests = []

    def _make_request(self, method, endpoint, params=None):
        self.requests.append((endpoint, params))
        if self.error is not None:
            raise self.error
        response = self.pages.pop(0) if self.pages else page([])
        if isinstance(response, Exception):
            raise response
        return response

    def list_disputes(self, start_time=None, cancel_event=None):
        return DisputePager(self, start_time=start_time, cancel_event=cancel_event)

    def get_dispute(self, dispute_id):
        self.detail_requests.append(dispute_id)
        if dispute_id in self.details:
            return self.details[dispute_id]
        raise PayPalError(f"Dispute {dispute_id} not found", 404)
