from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime


class LinkTokenResponse(BaseModel):
    link_token: str
    expiration: str


class ExchangeTokenRequest(BaseModel):
    public_token: str


class PlaidItemResponse(BaseModel):
    id: str
    item_id: str
    institution_id: Optional[str] = None
    institution_name: Optional[str] = None
    status: str
    error_message: Optional[str] = None
    last_synced: Optional[str] = None
    created_at: str


class LinkedItemResponse(PlaidItemResponse):
    accounts_saved: int
    job_id: Optional[str] = None


class PlaidAccountResponse(BaseModel):
    id: str
    item_id: str
    account_id: str
    name: str
    official_name: Optional[str] = None
    mask: Optional[str] = None
    type: str
    subtype: Optional[str] = None
    current_balance: Optional[float] = None
    available_balance: Optional[float] = None


class SyncResponse(BaseModel):
    job_id: str
    status: str


class TransactionResponse(BaseModel):
    id: str
    account_id: str
    transaction_id: str
    amount: float
    date: Optional[str] = None
    name: Optional[str] = None
    merchant_name: Optional[str] = None
    primary_category: Optional[str] = None
    detailed_category: Optional[str] = None
    payment_channel: Optional[str] = None
    type: Optional[str] = None
    currency: Optional[str] = None
    pending: bool = False
    account_owner: Optional[str] = None
    personal_finance_category_icon_url: Optional[str] = None
    expense: bool
    income: bool


class TransactionUpdate(BaseModel):
    amount: Optional[float] = None
    primary_category: Optional[str] = None
    detailed_category: Optional[str] = None
    merchant_name: Optional[str] = None
    date: Optional[str] = None
    payment_channel: Optional[str] = None
    personal_finance_category_icon_url: Optional[str] = None


class TransactionRuleCreate(BaseModel):
    name: str = Field(..., min_length=1)
    conditions: Dict[str, Any]
    personal_finance_category: str = Field(..., min_length=1)


class TransactionRuleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    conditions: Optional[Dict[str, Any]] = None
    personal_finance_category: Optional[str] = Field(None, min_length=1)


class TransactionRule(BaseModel):
    id: int
    user_id: str
    name: str
    conditions: Dict[str, Any]
    personal_finance_category: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class RuleApplicationResponse(BaseModel):
    rules_loaded: int
    rules_skipped: int
    transactions_scanned: int
    changed: int


class RecategorizeResponse(BaseModel):
    changed: int


class CacheClearResponse(BaseModel):
    cleared: str


class WebhookResponse(BaseModel):
    received: bool
    job_id: Optional[str] = None


class DailySyncResponse(BaseModel):
    job_id: str
    status: str
