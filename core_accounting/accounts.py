"""
Chart of Accounts Module

Manages general ledger accounts. Account codes are sortable strings whose
leading digit fixes the account type: 1 asset, 2 liability, 3 equity,
4 revenue, 5 to 9 expense. Accounts are deactivated, never deleted.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
import logging

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import InvalidAccountError, NotFoundError
from .logging_config import log_action

logger = logging.getLogger("ledgerline.accounts")


class AccountType(Enum):
    """Standard accounting account types"""
    ASSET = "asset"           # Debit normal balance
    LIABILITY = "liability"   # Credit normal balance
    EQUITY = "equity"         # Credit normal balance
    REVENUE = "revenue"       # Credit normal balance
    EXPENSE = "expense"       # Debit normal balance


class NormalBalance(Enum):
    DEBIT = "debit"
    CREDIT = "credit"


CODE_PREFIXES = {
    AccountType.ASSET: ("1",),
    AccountType.LIABILITY: ("2",),
    AccountType.EQUITY: ("3",),
    AccountType.REVENUE: ("4",),
    AccountType.EXPENSE: ("5", "6", "7", "8", "9"),
}


def default_normal_balance(account_type: AccountType) -> NormalBalance:
    if account_type in (AccountType.ASSET, AccountType.EXPENSE):
        return NormalBalance.DEBIT
    return NormalBalance.CREDIT


def type_for_code(code: str) -> Optional[AccountType]:
    """Account type implied by a code's leading digit"""
    for account_type, prefixes in CODE_PREFIXES.items():
        if code[:1] in prefixes:
            return account_type
    return None


@dataclass
class Account(StorageRecord):
    """General ledger account; the code doubles as the record id"""
    code: str
    name: str
    account_type: AccountType
    normal_balance: NormalBalance
    is_active: bool = True
    description: str = ""

    @property
    def is_contra(self) -> bool:
        return self.normal_balance != default_normal_balance(self.account_type)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['account_type'] = self.account_type.value
        result['normal_balance'] = self.normal_balance.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            code=data['code'],
            name=data['name'],
            account_type=AccountType(data['account_type']),
            normal_balance=NormalBalance(data['normal_balance']),
            is_active=data.get('is_active', True),
            description=data.get('description', "")
        )


# (code, name, type, normal balance override)
DEFAULT_CHART = [
    ("1000", "Cash", AccountType.ASSET, None),
    ("1100", "Bank", AccountType.ASSET, None),
    ("1200", "Accounts Receivable", AccountType.ASSET, None),
    ("1300", "Inventory", AccountType.ASSET, None),
    ("1500", "Fixed Assets", AccountType.ASSET, None),
    ("1510", "Accumulated Depreciation", AccountType.ASSET, NormalBalance.CREDIT),
    ("2000", "Accounts Payable", AccountType.LIABILITY, None),
    ("2200", "Sales Tax Payable", AccountType.LIABILITY, None),
    ("3000", "Owner's Equity", AccountType.EQUITY, None),
    ("3100", "Retained Earnings", AccountType.EQUITY, None),
    ("4100", "Sales Revenue", AccountType.REVENUE, None),
    ("4800", "Gain on Asset Disposal", AccountType.REVENUE, None),
    ("4900", "Sales Discounts", AccountType.REVENUE, NormalBalance.DEBIT),
    ("5100", "Cost of Goods Sold", AccountType.EXPENSE, None),
    ("5900", "Inventory Adjustments", AccountType.EXPENSE, None),
    ("5950", "Purchase Discounts", AccountType.EXPENSE, NormalBalance.CREDIT),
    ("6100", "Operating Expenses", AccountType.EXPENSE, None),
    ("6500", "Depreciation Expense", AccountType.EXPENSE, None),
    ("8920", "Loss on Asset Disposal", AccountType.EXPENSE, None),
]


class ChartOfAccounts:
    """
    Account registry used by the ledger to validate journal lines
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "accounts"

    def create_account(
        self,
        code: str,
        name: str,
        account_type: AccountType,
        normal_balance: Optional[NormalBalance] = None,
        description: str = "",
        actor: Optional[str] = None
    ) -> Account:
        """
        Create a new account

        Raises:
            InvalidAccountError: If the code is malformed, outside the type's
                range, or already taken
        """
        if not code or not code.isdigit():
            raise InvalidAccountError(f"Account code must be numeric, got '{code}'",
                                      {"code": code})
        if code[:1] not in CODE_PREFIXES[account_type]:
            raise InvalidAccountError(
                f"Account code {code} is outside the {account_type.value} range",
                {"code": code, "account_type": account_type.value}
            )
        if self.storage.exists(self.table_name, code):
            raise InvalidAccountError(f"Account {code} already exists", {"code": code})

        now = datetime.now(timezone.utc)
        account = Account(
            id=code,
            created_at=now,
            updated_at=now,
            code=code,
            name=name,
            account_type=account_type,
            normal_balance=normal_balance or default_normal_balance(account_type),
            description=description
        )
        self.storage.save(self.table_name, code, account.to_dict())

        self.audit_trail.log_event(
            event_type=AuditEventType.ACCOUNT_CREATED,
            entity_type="account",
            entity_id=code,
            metadata={
                "name": name,
                "account_type": account_type.value,
                "normal_balance": account.normal_balance.value
            },
            user_id=actor
        )
        log_action(logger, "info", f"Created account {code} {name}",
                   user_id=actor, action="create_account", resource=code)
        return account

    def get_account(self, code: str) -> Optional[Account]:
        data = self.storage.load(self.table_name, code)
        return Account.from_dict(data) if data else None

    def require_account(self, code: str) -> Account:
        account = self.get_account(code)
        if not account:
            raise NotFoundError(f"Account {code} not found", {"code": code})
        return account

    def list_accounts(self, account_type: Optional[AccountType] = None,
                      active_only: bool = False) -> List[Account]:
        """Accounts sorted by code"""
        accounts = [Account.from_dict(data) for data in self.storage.load_all(self.table_name)]
        if account_type:
            accounts = [a for a in accounts if a.account_type == account_type]
        if active_only:
            accounts = [a for a in accounts if a.is_active]
        accounts.sort(key=lambda a: a.code)
        return accounts

    def deactivate_account(self, code: str, actor: Optional[str] = None) -> Account:
        """Deactivated accounts keep their history but reject new lines"""
        account = self.require_account(code)
        account.is_active = False
        account.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.table_name, code, account.to_dict())

        self.audit_trail.log_event(
            event_type=AuditEventType.ACCOUNT_DEACTIVATED,
            entity_type="account",
            entity_id=code,
            metadata={"name": account.name},
            user_id=actor
        )
        log_action(logger, "info", f"Deactivated account {code}",
                   user_id=actor, action="deactivate_account", resource=code)
        return account

    def seed_default_chart(self, actor: Optional[str] = None) -> int:
        """Create any missing default accounts; returns how many were added"""
        created = 0
        for code, name, account_type, normal_balance in DEFAULT_CHART:
            if self.storage.exists(self.table_name, code):
                continue
            self.create_account(code, name, account_type, normal_balance, actor=actor)
            created += 1
        return created
