"""
Plaid API Client Service

Handles all interactions with Plaid API for account linking and transaction syncing.
"""
import json
import logging
from typing import Optional, Dict, Any
from datetime import date, datetime

import plaid
from plaid.api import plaid_api
from plaid.model.link_token_create_request import LinkTokenCreateRequest
from plaid.model.link_token_create_request_user import LinkTokenCreateRequestUser
from plaid.model.products import Products
from plaid.model.country_code import CountryCode
from plaid.model.item_public_token_exchange_request import ItemPublicTokenExchangeRequest
from plaid.model.transactions_sync_request import TransactionsSyncRequest
from plaid.model.accounts_get_request import AccountsGetRequest
from plaid.model.item_get_request import ItemGetRequest
from plaid.model.item_remove_request import ItemRemoveRequest
from plaid.model.institutions_get_by_id_request import InstitutionsGetByIdRequest
from plaid.model.webhook_verification_key_get_request import WebhookVerificationKeyGetRequest
from plaid.exceptions import ApiException

from budgee.config import settings

logger = logging.getLogger(__name__)

LOGIN_REQUIRED_CODES = {"ITEM_LOGIN_REQUIRED", "PENDING_EXPIRATION", "ACCESS_NOT_GRANTED"}
CURSOR_RESET_CODES = {"TRANSACTIONS_SYNC_MUTATION_DURING_PAGINATION"}


def _enum_value(value) -> Optional[str]:
    """Plaid SDK returns enum-like objects for type fields; unwrap to a string."""
    if value is None:
        return None
    if hasattr(value, "value"):
        return value.value
    return str(value)


def _field(obj, key: str, default=None):
    if obj is None:
        return default
    try:
        value = obj.get(key, default)
    except AttributeError:
        value = getattr(obj, key, default)
    return default if value is None else value


def _error_code(exc: ApiException) -> Optional[str]:
    try:
        body = json.loads(exc.body or "{}")
    except (TypeError, ValueError):
        return None
    return body.get("error_code")


class PlaidClient:
    """Client for interacting with Plaid API"""

    def __init__(self):
        self.client_id = settings.PLAID_CLIENT_ID
        self.secret = settings.PLAID_SECRET
        self.environment = self._get_environment()
        self.client = None

        if self._is_enabled():
            self._initialize_client()

    def _is_enabled(self) -> bool:
        """Check if Plaid is properly configured"""
        return bool(self.client_id and self.secret)

    def _get_environment(self) -> str:
        """Map environment string to Plaid host"""
        env_map = {
            "sandbox": plaid.Environment.Sandbox,
            "production": plaid.Environment.Production,
        }
        return env_map.get(settings.PLAID_ENVIRONMENT.lower(), plaid.Environment.Sandbox)

    def _initialize_client(self):
        configuration = plaid.Configuration(
            host=self.environment,
            api_key={
                'clientId': self.client_id,
                'secret': self.secret,
            }
        )
        api_client = plaid.ApiClient(configuration)
        self.client = plaid_api.PlaidApi(api_client)
        logger.info(f"Plaid client initialized with environment: {settings.PLAID_ENVIRONMENT}")

    def create_link_token(self, user_id: str, client_name: str = "Budgee") -> Optional[Dict[str, Any]]:
        """
        Create a link token for Plaid Link initialization

        Returns:
            Dictionary with link_token and expiration
        """
        if not self._is_enabled():
            logger.error("Plaid is not configured")
            return None

        try:
            request = LinkTokenCreateRequest(
                user=LinkTokenCreateRequestUser(client_user_id=str(user_id)),
                client_name=client_name,
                products=[Products("transactions")],
                country_codes=[CountryCode("US")],
                language="en",
            )
            response = self.client.link_token_create(request)

            expiration = response['expiration']
            if isinstance(expiration, datetime):
                expiration = expiration.isoformat()

            return {
                "link_token": response['link_token'],
                "expiration": expiration,
            }
        except ApiException as e:
            logger.error(f"Failed to create link token for user {user_id}: {e}")
            return None

    def exchange_public_token(self, public_token: str) -> Optional[Dict[str, Any]]:
        """
        Exchange public token for access token and item ID

        Returns:
            Dictionary with access_token and item_id
        """
        if not self._is_enabled():
            logger.error("Plaid is not configured")
            return None

        try:
            request = ItemPublicTokenExchangeRequest(public_token=public_token)
            response = self.client.item_public_token_exchange(request)

            return {
                "access_token": response['access_token'],
                "item_id": response['item_id'],
            }
        except ApiException as e:
            logger.error(f"Failed to exchange public token: {e}")
            return None

    def get_item_metadata(self, access_token: str) -> Optional[Dict[str, Any]]:
        """
        Get the institution an item is connected to

        Returns:
            Dictionary with institution_id and institution_name
        """
        if not self._is_enabled():
            logger.error("Plaid is not configured")
            return None

        try:
            item = self.client.item_get(ItemGetRequest(access_token=access_token))['item']
            institution_id = _field(item, 'institution_id')
            institution_name = None
            if institution_id:
                institution = self.client.institutions_get_by_id(InstitutionsGetByIdRequest(
                    institution_id=institution_id,
                    country_codes=[CountryCode("US")],
                ))['institution']
                institution_name = _field(institution, 'name')

            return {
                "institution_id": institution_id,
                "institution_name": institution_name,
            }
        except ApiException as e:
            logger.error(f"Failed to get item metadata: {e}")
            return None

    def get_accounts(self, access_token: str) -> Optional[Dict[str, Any]]:
        """
        Get accounts (with current balances) associated with an access token
        """
        if not self._is_enabled():
            logger.error("Plaid is not configured")
            return None

        try:
            response = self.client.accounts_get(AccountsGetRequest(access_token=access_token))
            return {
                "accounts": [self._format_account(acc) for acc in response['accounts']],
            }
        except ApiException as e:
            logger.error(f"Failed to get accounts: {e}")
            return None

    def sync_transactions(
        self,
        access_token: str,
        cursor: Optional[str] = None,
        count: int = 500
    ) -> Optional[Dict[str, Any]]:
        """
        Fetch one page of /transactions/sync

        Args:
            access_token: Plaid access token
            cursor: Cursor from the previous page or sync (None/"" for full history)
            count: Page size (max 500)

        Returns:
            Dictionary with added, modified, removed, next_cursor and has_more.
            When Plaid needs the user to re-authenticate the dictionary carries
            ``login_required``; when the feed changed mid-pagination it carries
            ``cursor_reset_required``. None on any other failure.
        """
        if not self._is_enabled():
            logger.error("Plaid is not configured")
            return None

        request_args = {
            "access_token": access_token,
            "count": min(count, 500),
        }
        if cursor:
            request_args["cursor"] = cursor

        # Security: access token is never logged
        logger.info(f"Syncing transactions from cursor {cursor[:20] + '...' if cursor else 'None (initial sync)'}")

        try:
            response = self.client.transactions_sync(TransactionsSyncRequest(**request_args))
        except ApiException as e:
            code = _error_code(e)
            if code in LOGIN_REQUIRED_CODES:
                logger.warning(f"Plaid item requires login: {code}")
                return {"login_required": True, "error_code": code, "error": str(e)}
            if code in CURSOR_RESET_CODES:
                logger.warning("Transactions changed during pagination, restart required")
                return {"cursor_reset_required": True, "error_code": code}
            logger.error(f"Failed to sync transactions ({code}): {e}")
            return None

        result = {
            "added": [self._format_transaction(txn) for txn in response.get('added', [])],
            "modified": [self._format_transaction(txn) for txn in response.get('modified', [])],
            "removed": [self._format_removed_transaction(txn) for txn in response.get('removed', [])],
            "next_cursor": response['next_cursor'],
            "has_more": response['has_more'],
        }
        logger.info(
            f"Sync page: {len(result['added'])} added, {len(result['modified'])} modified, "
            f"{len(result['removed'])} removed, has_more={result['has_more']}"
        )
        return result

    def remove_item(self, access_token: str) -> bool:
        """
        Remove (disconnect) a Plaid item

        Returns:
            True if successful, False otherwise
        """
        if not self._is_enabled():
            logger.error("Plaid is not configured")
            return False

        try:
            self.client.item_remove(ItemRemoveRequest(access_token=access_token))
            logger.info("Successfully removed Plaid item")
            return True
        except ApiException as e:
            logger.error(f"Failed to remove item: {e}")
            return False

    def get_webhook_verification_key(self, key_id: str) -> Optional[Dict[str, Any]]:
        """Fetch the JWK Plaid signed a webhook with."""
        if not self._is_enabled():
            logger.error("Plaid is not configured")
            return None

        try:
            response = self.client.webhook_verification_key_get(
                WebhookVerificationKeyGetRequest(key_id=key_id)
            )
            key = response['key']
            return {
                "kid": _field(key, 'kid'),
                "kty": _field(key, 'kty'),
                "crv": _field(key, 'crv'),
                "alg": _field(key, 'alg'),
                "x": _field(key, 'x'),
                "y": _field(key, 'y'),
                "expired_at": _field(key, 'expired_at'),
            }
        except ApiException as e:
            logger.error(f"Failed to get webhook verification key {key_id}: {e}")
            return None

    def _format_account(self, account: Dict[str, Any]) -> Dict[str, Any]:
        """Format Plaid account object for our use"""
        balances = account['balances']
        return {
            "account_id": account['account_id'],
            "name": account['name'],
            "official_name": account.get('official_name'),
            "mask": account.get('mask'),
            "type": _enum_value(account['type']),
            "subtype": _enum_value(account.get('subtype')),
            "balances": {
                "available": balances.get('available'),
                "current": balances.get('current'),
                "currency": balances.get('iso_currency_code'),
            }
        }

    def _format_transaction(self, transaction: Dict[str, Any]) -> Dict[str, Any]:
        """Format Plaid transaction object for our use"""
        pfc = transaction.get('personal_finance_category')
        txn_date = transaction['date']
        if isinstance(txn_date, date):
            txn_date = txn_date.isoformat()

        return {
            "transaction_id": transaction['transaction_id'],
            "account_id": transaction['account_id'],
            "amount": transaction['amount'],
            "date": txn_date,
            "name": transaction.get('name'),
            "merchant_name": transaction.get('merchant_name'),
            "payment_channel": _enum_value(transaction.get('payment_channel')),
            "type": _enum_value(transaction.get('transaction_type')),
            "primary_category": _field(pfc, 'primary'),
            "detailed_category": _field(pfc, 'detailed'),
            "personal_finance_category_icon_url": transaction.get('personal_finance_category_icon_url'),
            "pending": transaction.get('pending', False),
            "currency": transaction.get('iso_currency_code') or transaction.get('unofficial_currency_code'),
            "account_owner": transaction.get('account_owner'),
        }

    def _format_removed_transaction(self, removed: Dict[str, Any]) -> str:
        return removed['transaction_id']


# Singleton instance
plaid_client = PlaidClient()
