"""
Double-Entry Ledger Engine

Core bookkeeping engine that ensures every journal entry balances (debits =
credits in the base currency, within a one-cent tolerance). Posted entries
are never edited or deleted: corrections are voids or reversing entries, and
account balances are always derived by summing posted lines.
"""

from decimal import Decimal
from datetime import datetime, date, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple, Any
from enum import Enum
import logging
import uuid

from .currency import Money, Currency, quantize_amount
from .storage import StorageInterface, StorageRecord, next_sequence
from .audit import AuditTrail, AuditEventType
from .accounts import ChartOfAccounts, NormalBalance
from .errors import (
    InvalidEntryError, ImbalancedEntryError, UnknownAccountError,
    EntryStateError, AlreadyVoidError, NotFoundError
)
from .logging_config import log_action

logger = logging.getLogger("ledgerline.ledger")


class JournalEntryStatus(Enum):
    """States of a journal entry"""
    DRAFT = "draft"    # Editable, no effect on balances
    POSTED = "posted"  # Counts toward balances, immutable
    VOID = "void"      # Terminal, excluded from balances


class JournalSource(Enum):
    """Subsystem that produced an entry"""
    MANUAL = "manual"
    SALES = "sales"
    PURCHASES = "purchases"
    PAYMENTS = "payments"
    INVENTORY = "inventory"
    INVENTORY_REVERSAL = "inventory_reversal"
    DEPRECIATION = "depreciation"
    ASSET_DISPOSAL = "asset_disposal"
    EXPENSES = "expenses"
    REVERSAL = "reversal"


@dataclass
class JournalLine:
    """
    Individual line in a journal entry
    Each line affects one account with either a debit or a credit
    """
    account_code: str
    description: str
    debit: Money
    credit: Money
    exchange_rate: Decimal = Decimal('1')  # line currency -> base currency
    line_number: int = 0

    def __post_init__(self):
        if not isinstance(self.exchange_rate, Decimal):
            self.exchange_rate = Decimal(str(self.exchange_rate))
        if self.debit.currency != self.credit.currency:
            raise InvalidEntryError("Debit and credit amounts must use same currency",
                                    {"account_code": self.account_code})
        if self.debit.is_negative() or self.credit.is_negative():
            raise InvalidEntryError("Journal line amounts cannot be negative",
                                    {"account_code": self.account_code})
        if self.debit.is_zero() == self.credit.is_zero():
            raise InvalidEntryError(
                "Journal line must have exactly one of debit or credit amount",
                {"account_code": self.account_code}
            )
        if self.exchange_rate <= Decimal('0'):
            raise InvalidEntryError("Journal line exchange rate must be positive",
                                    {"account_code": self.account_code})

    @classmethod
    def debit_line(cls, account_code: str, amount: Money, description: str = "",
                   exchange_rate: Decimal = Decimal('1')) -> 'JournalLine':
        return cls(account_code, description, amount, Money.zero(amount.currency), exchange_rate)

    @classmethod
    def credit_line(cls, account_code: str, amount: Money, description: str = "",
                    exchange_rate: Decimal = Decimal('1')) -> 'JournalLine':
        return cls(account_code, description, Money.zero(amount.currency), amount, exchange_rate)

    @property
    def currency(self) -> Currency:
        return self.debit.currency

    @property
    def is_debit(self) -> bool:
        return not self.debit.is_zero()

    @property
    def amount(self) -> Money:
        """The non-zero side"""
        return self.debit if self.is_debit else self.credit

    @property
    def base_debit(self) -> Decimal:
        return self.debit.amount * self.exchange_rate

    @property
    def base_credit(self) -> Decimal:
        return self.credit.amount * self.exchange_rate

    def mirrored(self) -> 'JournalLine':
        """Same amount on the opposite side"""
        return JournalLine(
            account_code=self.account_code,
            description=f"REVERSAL: {self.description}",
            debit=self.credit,
            credit=self.debit,
            exchange_rate=self.exchange_rate
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'account_code': self.account_code,
            'description': self.description,
            'debit': str(self.debit.amount),
            'credit': str(self.credit.amount),
            'currency': self.currency.code,
            'exchange_rate': str(self.exchange_rate),
            'line_number': self.line_number
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'JournalLine':
        currency = Currency[data['currency']]
        return cls(
            account_code=data['account_code'],
            description=data.get('description', ""),
            debit=Money(Decimal(data['debit']), currency),
            credit=Money(Decimal(data['credit']), currency),
            exchange_rate=Decimal(data.get('exchange_rate', '1')),
            line_number=data.get('line_number', 0)
        )


@dataclass
class JournalEntry(StorageRecord):
    """
    Double-entry journal entry with lines that must balance in base currency
    """
    entry_number: str
    entry_date: date
    description: str
    lines: List[JournalLine]
    status: JournalEntryStatus
    source: JournalSource = JournalSource.MANUAL
    source_document_id: Optional[str] = None
    memo: str = ""
    created_by: Optional[str] = None
    posted_by: Optional[str] = None
    posted_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    voided_by: Optional[str] = None
    void_reason: Optional[str] = None
    reverses: Optional[str] = None     # ID of the entry this one mirrors
    reversed_by: Optional[str] = None  # ID of the mirror entry

    def total_debits(self) -> Decimal:
        return sum((line.base_debit for line in self.lines), Decimal('0'))

    def total_credits(self) -> Decimal:
        return sum((line.base_credit for line in self.lines), Decimal('0'))

    def get_affected_accounts(self) -> Set[str]:
        return {line.account_code for line in self.lines}

    @property
    def is_posted(self) -> bool:
        return self.status == JournalEntryStatus.POSTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'entry_number': self.entry_number,
            'entry_date': self.entry_date.isoformat(),
            'description': self.description,
            'lines': [line.to_dict() for line in self.lines],
            'status': self.status.value,
            'source': self.source.value,
            'source_document_id': self.source_document_id,
            'memo': self.memo,
            'created_by': self.created_by,
            'posted_by': self.posted_by,
            'posted_at': self.posted_at.isoformat() if self.posted_at else None,
            'voided_at': self.voided_at.isoformat() if self.voided_at else None,
            'voided_by': self.voided_by,
            'void_reason': self.void_reason,
            'reverses': self.reverses,
            'reversed_by': self.reversed_by,
            'total_debits': str(self.total_debits()),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'JournalEntry':
        posted_at = data.get('posted_at')
        voided_at = data.get('voided_at')
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            entry_number=data['entry_number'],
            entry_date=date.fromisoformat(data['entry_date']),
            description=data['description'],
            lines=[JournalLine.from_dict(line) for line in data['lines']],
            status=JournalEntryStatus(data['status']),
            source=JournalSource(data.get('source', 'manual')),
            source_document_id=data.get('source_document_id'),
            memo=data.get('memo', ""),
            created_by=data.get('created_by'),
            posted_by=data.get('posted_by'),
            posted_at=datetime.fromisoformat(posted_at) if posted_at else None,
            voided_at=datetime.fromisoformat(voided_at) if voided_at else None,
            voided_by=data.get('voided_by'),
            void_reason=data.get('void_reason'),
            reverses=data.get('reverses'),
            reversed_by=data.get('reversed_by')
        )


@dataclass
class AccountTotals:
    """Summed posted activity for one account, in base currency"""
    account_code: str
    debits: Decimal = Decimal('0')
    credits: Decimal = Decimal('0')

    @property
    def net_debit(self) -> Decimal:
        return self.debits - self.credits


class GeneralLedger:
    """
    General ledger that manages journal entries and derives account balances
    Balances are derived from posted lines, never stored separately
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        chart: ChartOfAccounts,
        base_currency: Currency = Currency.USD,
        tolerance: Decimal = Decimal('0.01')
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.chart = chart
        self.base_currency = base_currency
        self.tolerance = tolerance
        self.table_name = "journal_entries"

    # Validation

    def validate_lines(self, lines: List[JournalLine]) -> None:
        """
        Check a line set before anything is written

        Raises:
            ImbalancedEntryError: No lines, or debits and credits differ by
                more than the tolerance
            UnknownAccountError: A line names a missing or inactive account
        """
        if not lines:
            raise ImbalancedEntryError("Journal entry must have at least one line")

        for line in lines:
            account = self.chart.get_account(line.account_code)
            if account is None:
                raise UnknownAccountError(
                    f"Account {line.account_code} does not exist",
                    {"account_code": line.account_code}
                )
            if not account.is_active:
                raise UnknownAccountError(
                    f"Account {line.account_code} is inactive",
                    {"account_code": line.account_code}
                )

        debits = quantize_amount(sum((l.base_debit for l in lines), Decimal('0')), self.base_currency)
        credits = quantize_amount(sum((l.base_credit for l in lines), Decimal('0')), self.base_currency)
        if abs(debits - credits) > self.tolerance:
            raise ImbalancedEntryError(
                f"Journal entry not balanced: debits={debits}, credits={credits}",
                {"debits": str(debits), "credits": str(credits),
                 "difference": str(debits - credits)}
            )

    @staticmethod
    def _number_lines(lines: List[JournalLine]) -> List[JournalLine]:
        for index, line in enumerate(lines, start=1):
            line.line_number = index
        return lines

    # Mutations

    def create_entry(
        self,
        entry_date: date,
        description: str,
        lines: List[JournalLine],
        post_immediately: bool = False,
        memo: str = "",
        source: JournalSource = JournalSource.MANUAL,
        source_document_id: Optional[str] = None,
        actor: Optional[str] = None
    ) -> JournalEntry:
        """
        Create a journal entry, optionally posting it in the same unit

        Raises:
            ImbalancedEntryError, UnknownAccountError: Validation failed;
                nothing was stored
        """
        self.validate_lines(lines)

        with self.storage.atomic():
            now = datetime.now(timezone.utc)
            number = next_sequence(self.storage, "journal_entry")
            entry = JournalEntry(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                entry_number=f"JE-{number:06d}",
                entry_date=entry_date,
                description=description,
                lines=self._number_lines(list(lines)),
                status=JournalEntryStatus.DRAFT,
                source=source,
                source_document_id=source_document_id,
                memo=memo,
                created_by=actor
            )
            self._save_entry(entry)

            self.audit_trail.log_event(
                event_type=AuditEventType.JOURNAL_ENTRY_CREATED,
                entity_type="journal_entry",
                entity_id=entry.id,
                metadata={
                    "entry_number": entry.entry_number,
                    "source": source.value,
                    "source_document_id": source_document_id,
                    "line_count": len(lines),
                    "accounts": sorted(entry.get_affected_accounts()),
                    "total": entry.total_debits()
                },
                user_id=actor
            )

            if post_immediately:
                entry = self.post_entry(entry.id, actor=actor)

        log_action(logger, "info",
                   f"Created journal entry {entry.entry_number} ({entry.status.value})",
                   user_id=actor, action="create_entry", resource=entry.id,
                   extra={"source": source.value, "source_document_id": source_document_id})
        return entry

    def update_entry_lines(self, entry_id: str, lines: List[JournalLine],
                           actor: Optional[str] = None) -> JournalEntry:
        """Replace the lines of a draft entry"""
        entry = self.require_entry(entry_id)
        if entry.status != JournalEntryStatus.DRAFT:
            raise EntryStateError(
                f"Cannot edit journal entry in {entry.status.value} state",
                {"entry_id": entry_id, "status": entry.status.value}
            )
        self.validate_lines(lines)

        with self.storage.atomic():
            entry.lines = self._number_lines(list(lines))
            entry.updated_at = datetime.now(timezone.utc)
            self._save_entry(entry)
            self.audit_trail.log_event(
                event_type=AuditEventType.JOURNAL_ENTRY_UPDATED,
                entity_type="journal_entry",
                entity_id=entry.id,
                metadata={"line_count": len(lines), "total": entry.total_debits()},
                user_id=actor
            )
        return entry

    def post_entry(self, entry_id: str, actor: Optional[str] = None) -> JournalEntry:
        """
        Post a draft entry so it counts toward balances

        Raises:
            EntryStateError: Entry is not a draft
        """
        entry = self.require_entry(entry_id)
        if entry.status != JournalEntryStatus.DRAFT:
            raise EntryStateError(
                f"Cannot post journal entry in {entry.status.value} state",
                {"entry_id": entry_id, "status": entry.status.value}
            )
        self.validate_lines(entry.lines)

        with self.storage.atomic():
            now = datetime.now(timezone.utc)
            entry.status = JournalEntryStatus.POSTED
            entry.posted_at = now
            entry.posted_by = actor
            entry.updated_at = now
            self._save_entry(entry)

            self.audit_trail.log_event(
                event_type=AuditEventType.JOURNAL_ENTRY_POSTED,
                entity_type="journal_entry",
                entity_id=entry.id,
                metadata={
                    "entry_number": entry.entry_number,
                    "posted_at": now
                },
                user_id=actor
            )

        log_action(logger, "info", f"Posted journal entry {entry.entry_number}",
                   user_id=actor, action="post_entry", resource=entry.id)
        return entry

    def void_entry(self, entry_id: str, reason: str = "",
                   actor: Optional[str] = None) -> JournalEntry:
        """
        Void a posted entry; it stops counting toward balances

        Raises:
            AlreadyVoidError: Entry is already void
            EntryStateError: Entry is still a draft
        """
        entry = self.require_entry(entry_id)
        if entry.status == JournalEntryStatus.VOID:
            raise AlreadyVoidError(f"Journal entry {entry.entry_number} is already void",
                                   {"entry_id": entry_id})
        if entry.status != JournalEntryStatus.POSTED:
            raise EntryStateError(
                f"Cannot void journal entry in {entry.status.value} state",
                {"entry_id": entry_id, "status": entry.status.value}
            )

        with self.storage.atomic():
            now = datetime.now(timezone.utc)
            entry.status = JournalEntryStatus.VOID
            entry.voided_at = now
            entry.voided_by = actor
            entry.void_reason = reason
            entry.updated_at = now
            self._save_entry(entry)

            self.audit_trail.log_event(
                event_type=AuditEventType.JOURNAL_ENTRY_VOIDED,
                entity_type="journal_entry",
                entity_id=entry.id,
                metadata={"entry_number": entry.entry_number, "reason": reason},
                user_id=actor
            )

        log_action(logger, "info", f"Voided journal entry {entry.entry_number}",
                   user_id=actor, action="void_entry", resource=entry.id,
                   extra={"reason": reason})
        return entry

    def reverse_entry(
        self,
        entry_id: str,
        reversal_date: Optional[date] = None,
        description: Optional[str] = None,
        actor: Optional[str] = None
    ) -> JournalEntry:
        """
        Post a mirror entry that cancels a posted entry

        The original stays posted; both are linked through reverses and
        reversed_by.

        Raises:
            EntryStateError: Entry is not posted or was already reversed
        """
        original = self.require_entry(entry_id)
        if original.status != JournalEntryStatus.POSTED:
            raise EntryStateError(
                f"Can only reverse posted journal entries, {original.entry_number} is {original.status.value}",
                {"entry_id": entry_id, "status": original.status.value}
            )
        if original.reversed_by:
            raise EntryStateError(
                f"Journal entry {original.entry_number} was already reversed",
                {"entry_id": entry_id, "reversed_by": original.reversed_by}
            )

        with self.storage.atomic():
            reversal = self.create_entry(
                entry_date=reversal_date or original.entry_date,
                description=description or f"REVERSAL: {original.description}",
                lines=[line.mirrored() for line in original.lines],
                post_immediately=True,
                memo=f"Reverses {original.entry_number}",
                source=JournalSource.REVERSAL,
                source_document_id=original.source_document_id,
                actor=actor
            )
            reversal.reverses = original.id
            self._save_entry(reversal)

            original.reversed_by = reversal.id
            original.updated_at = datetime.now(timezone.utc)
            self._save_entry(original)

            self.audit_trail.log_event(
                event_type=AuditEventType.JOURNAL_ENTRY_REVERSED,
                entity_type="journal_entry",
                entity_id=original.id,
                metadata={
                    "entry_number": original.entry_number,
                    "reversing_entry_id": reversal.id,
                    "reversing_entry_number": reversal.entry_number
                },
                user_id=actor
            )

        log_action(logger, "info",
                   f"Reversed journal entry {original.entry_number} with {reversal.entry_number}",
                   user_id=actor, action="reverse_entry", resource=original.id)
        return reversal

    # Read model

    def get_entry(self, entry_id: str) -> Optional[JournalEntry]:
        data = self.storage.load(self.table_name, entry_id)
        return JournalEntry.from_dict(data) if data else None

    def require_entry(self, entry_id: str) -> JournalEntry:
        entry = self.get_entry(entry_id)
        if not entry:
            raise NotFoundError(f"Journal entry {entry_id} not found", {"entry_id": entry_id})
        return entry

    def find_entries(
        self,
        source_document_id: Optional[str] = None,
        source: Optional[JournalSource] = None,
        status: Optional[JournalEntryStatus] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> List[JournalEntry]:
        """Entries matching every given filter, ordered by entry number"""
        filters = {}
        if source_document_id is not None:
            filters['source_document_id'] = source_document_id
        if source is not None:
            filters['source'] = source.value
        if status is not None:
            filters['status'] = status.value

        entries = [JournalEntry.from_dict(data) for data in self.storage.find(self.table_name, filters)]
        if start_date:
            entries = [e for e in entries if e.entry_date >= start_date]
        if end_date:
            entries = [e for e in entries if e.entry_date <= end_date]
        entries.sort(key=lambda e: e.entry_number)
        return entries

    def posted_lines(self, start_date: Optional[date] = None,
                     end_date: Optional[date] = None) -> List[Tuple[JournalEntry, JournalLine]]:
        """Every line of every posted entry dated within the range"""
        result = []
        for entry in self.find_entries(status=JournalEntryStatus.POSTED,
                                       start_date=start_date, end_date=end_date):
            for line in entry.lines:
                result.append((entry, line))
        return result

    def account_totals(self, start_date: Optional[date] = None,
                       end_date: Optional[date] = None) -> Dict[str, AccountTotals]:
        """Posted debits and credits per account code"""
        totals: Dict[str, AccountTotals] = {}
        for _, line in self.posted_lines(start_date, end_date):
            bucket = totals.setdefault(line.account_code, AccountTotals(line.account_code))
            bucket.debits += line.base_debit
            bucket.credits += line.base_credit
        for bucket in totals.values():
            bucket.debits = quantize_amount(bucket.debits, self.base_currency)
            bucket.credits = quantize_amount(bucket.credits, self.base_currency)
        return totals

    def _signed_balance(self, account_code: str, totals: Optional[AccountTotals]) -> Decimal:
        if totals is None:
            return quantize_amount(Decimal('0'), self.base_currency)
        account = self.chart.get_account(account_code)
        balance = totals.net_debit
        if account and account.normal_balance == NormalBalance.CREDIT:
            balance = -balance
        return balance

    def account_balance(self, account_code: str, as_of: Optional[date] = None) -> Decimal:
        """
        Balance of an account in base currency, positive on its normal side

        Args:
            account_code: Account to calculate balance for
            as_of: Include entries dated on or before this date
        """
        totals = self.account_totals(end_date=as_of)
        return self._signed_balance(account_code, totals.get(account_code))

    def account_balance_for_period(self, account_code: str, start_date: date,
                                   end_date: date) -> Decimal:
        """Net movement of an account for entries dated within the period"""
        totals = self.account_totals(start_date=start_date, end_date=end_date)
        return self._signed_balance(account_code, totals.get(account_code))

    def _save_entry(self, entry: JournalEntry) -> None:
        self.storage.save(self.table_name, entry.id, entry.to_dict())
