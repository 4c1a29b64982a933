"""
SQLAlchemy ORM Models for PostgreSQL
"""
from sqlalchemy import (
    Column,
    String,
    Float,
    DateTime,
    ForeignKey,
    Text,
    Integer,
    Boolean,
    JSON,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime

Base = declarative_base()


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, unique=True, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    plaid_items = relationship("PlaidItem", back_populates="user", cascade="all, delete-orphan")
    transaction_rules = relationship("TransactionRule", back_populates="user", cascade="all, delete-orphan")


class PlaidItem(Base):
    """Represents a Plaid Item (bank connection) for a user"""
    __tablename__ = "plaid_items"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    access_token = Column(String, nullable=False)  # Fernet-encrypted
    item_id = Column(String, nullable=False, unique=True, index=True)
    institution_id = Column(String, nullable=True)
    institution_name = Column(String, nullable=True)
    status = Column(String, default="active", nullable=False)  # active, login_required, error
    error_message = Column(Text, nullable=True)
    # NULL or "" means the next sync pulls the full history
    sync_cursor = Column(Text, nullable=True)
    last_synced = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="plaid_items")
    accounts = relationship("Account", back_populates="plaid_item", cascade="all, delete-orphan", passive_deletes=True)


class Account(Base):
    """A balance-bearing account under a Plaid item"""
    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("item_id", "account_id", name="uq_accounts_item_account"),
    )

    id = Column(String, primary_key=True)
    item_id = Column(String, ForeignKey("plaid_items.id", ondelete="CASCADE"), nullable=False, index=True)
    account_id = Column(String, nullable=False, index=True)  # Plaid's account ID
    name = Column(String, nullable=False)
    official_name = Column(String, nullable=True)
    mask = Column(String, nullable=True)  # Last 4 digits
    type = Column(String, nullable=False)  # depository, credit, loan, investment
    subtype = Column(String, nullable=True)
    current_balance = Column(Float, nullable=True)
    available_balance = Column(Float, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    plaid_item = relationship("PlaidItem", back_populates="accounts")
    transactions = relationship("Transaction", back_populates="account", cascade="all, delete-orphan", passive_deletes=True)


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String, primary_key=True)
    account_id = Column(String, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    transaction_id = Column(String, nullable=False, unique=True, index=True)  # Plaid's transaction ID
    amount = Column(Float, nullable=False)  # Plaid sign: positive = money out
    date = Column(String, nullable=True)  # YYYY-MM-DD
    name = Column(String, nullable=True)
    merchant_name = Column(String, nullable=True)
    primary_category = Column(String, nullable=True)
    detailed_category = Column(String, nullable=True)
    payment_channel = Column(String, nullable=True)
    type = Column(String, nullable=True)
    currency = Column(String, nullable=True)
    pending = Column(Boolean, default=False, nullable=False)
    account_owner = Column(String, nullable=True)
    personal_finance_category_icon_url = Column(String, nullable=True)
    expense = Column(Boolean, default=False, nullable=False)
    income = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    account = relationship("Account", back_populates="transactions")


Index('ix_transactions_account_date', Transaction.account_id, Transaction.date)


class TransactionRule(Base):
    """User-authored reclassification rule; id order is creation order"""
    __tablename__ = "transaction_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    conditions = Column(JSON, nullable=False)
    personal_finance_category = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="transaction_rules")
