import os

os.environ["SECRET_KEY"] = "k9Xv2LqP7mZt4RwB8nYc3HdF6jGs1QaE"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CACHE_BACKEND"] = "memory"
os.environ["PLAID_WEBHOOK_VERIFY"] = "true"
os.environ.pop("PLAID_CLIENT_ID", None)
os.environ.pop("PLAID_SECRET", None)

import pytest

from budgee.database import postgres_db
from budgee.database.gateway import StorageGateway
from budgee.database.models import User
from budgee.services.cache import CacheRegistry, MemoryCacheBackend, set_cache_registry

TEST_ACCOUNTS = [
    {
        "account_id": "acc-checking",
        "name": "Everyday Checking",
        "type": "depository",
        "subtype": "checking",
        "balances": {"current": 1200.0, "available": 1100.0, "currency": "USD"},
    },
    {
        "account_id": "acc-card",
        "name": "Rewards Visa",
        "type": "credit",
        "subtype": "credit card",
        "balances": {"current": 310.5, "available": 4689.5, "currency": "USD"},
    },
    {
        "account_id": "acc-brokerage",
        "name": "Brokerage",
        "type": "investment",
        "subtype": "brokerage",
        "balances": {"current": 5000.0, "available": None, "currency": "USD"},
    },
]


def make_transaction(transaction_id, account_id="acc-checking", amount=50.0, **fields):
    transaction = {
        "transaction_id": transaction_id,
        "account_id": account_id,
        "amount": amount,
        "date": "2024-03-01",
        "name": f"Purchase {transaction_id}",
        "merchant_name": None,
        "primary_category": "FOOD_AND_DRINK",
        "detailed_category": None,
        "payment_channel": "in store",
        "type": "place",
        "currency": "USD",
        "pending": False,
    }
    transaction.update(fields)
    return transaction


@pytest.fixture
def db_engine():
    postgres_db.init_db("sqlite://")
    yield postgres_db.engine
    postgres_db.close_db()


@pytest.fixture
def session(db_engine):
    db = postgres_db.SessionLocal()
    yield db
    db.close()


@pytest.fixture
def cache():
    registry = CacheRegistry(backend=MemoryCacheBackend(), prefix="test")
    set_cache_registry(registry)
    yield registry
    set_cache_registry(None)


@pytest.fixture
def gateway(session, cache):
    return StorageGateway(session, cache)


@pytest.fixture
def user(session):
    user = User(id="user-1", email="user1@example.com")
    session.add(user)
    session.commit()
    return user


@pytest.fixture
def other_user(session):
    user = User(id="user-2", email="user2@example.com")
    session.add(user)
    session.commit()
    return user


@pytest.fixture
def item(gateway, user):
    item = gateway.save_item(
        user_id=user.id,
        access_token="access-sandbox-1",
        plaid_item_id="plaid-item-1",
        institution_id="ins_1",
        institution_name="First Platypus Bank",
    )
    gateway.save_accounts(item, TEST_ACCOUNTS)
    gateway.commit()
    return item


@pytest.fixture
def accounts(session, item):
    from budgee.database.models import Account

    rows = session.query(Account).filter(Account.item_id == item.id).all()
    return {account.account_id: account for account in rows}
