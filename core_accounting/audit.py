"""
Audit Trail Module

Hash-chained immutable audit log with SHA-256 for tamper detection.
Every state change in the system is logged here.
"""

import hashlib
import json
import threading
from datetime import date, datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
from decimal import Decimal
import uuid

from .storage import StorageInterface, StorageRecord


class AuditEventType(Enum):
    """Types of audit events"""
    # Chart of accounts events
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_DEACTIVATED = "account_deactivated"

    # Journal entry events
    JOURNAL_ENTRY_CREATED = "journal_entry_created"
    JOURNAL_ENTRY_UPDATED = "journal_entry_updated"
    JOURNAL_ENTRY_POSTED = "journal_entry_posted"
    JOURNAL_ENTRY_VOIDED = "journal_entry_voided"
    JOURNAL_ENTRY_REVERSED = "journal_entry_reversed"

    # Document events
    DOCUMENT_CREATED = "document_created"
    DOCUMENT_LINES_REPLACED = "document_lines_replaced"
    DOCUMENT_FINALIZED = "document_finalized"
    DOCUMENT_VOIDED = "document_voided"
    DOCUMENT_DELETED = "document_deleted"
    DOCUMENT_OVERDUE = "document_overdue"

    # Payment events
    PAYMENT_APPLIED = "payment_applied"
    PAYMENT_ROLLED_BACK = "payment_rolled_back"

    # Inventory events
    PRODUCT_REGISTERED = "product_registered"
    INVENTORY_CONSUMED = "inventory_consumed"
    INVENTORY_REVERSED = "inventory_reversed"
    INVENTORY_RECEIVED = "inventory_received"
    INVENTORY_ADJUSTED = "inventory_adjusted"
    INVENTORY_TRANSFERRED = "inventory_transferred"

    # Currency events
    EXCHANGE_RATE_RECORDED = "exchange_rate_recorded"

    # Expense events
    EXPENSE_RECORDED = "expense_recorded"
    EXPENSE_PAID = "expense_paid"
    EXPENSE_VOIDED = "expense_voided"

    # Fixed asset events
    ASSET_REGISTERED = "asset_registered"
    DEPRECIATION_POSTED = "depreciation_posted"
    ASSET_DISPOSED = "asset_disposed"

    # Company settings events
    COMPANY_SETTINGS_UPDATED = "company_settings_updated"

    # System events
    SYSTEM_START = "system_start"
    AUDIT_INTEGRITY_CHECK = "audit_integrity_check"



def _jsonable(value: Any) -> Any:
    """Convert metadata values to JSON-serializable format"""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    return value


@dataclass
class AuditEvent(StorageRecord):
    """
    Immutable audit event with hash chaining for tamper detection
    """
    event_type: AuditEventType
    entity_type: str  # document, journal_entry, payment, product, ...
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    user_id: Optional[str] = None  # Actor who initiated the action

    def __post_init__(self):
        self.metadata = _jsonable(self.metadata or {})

    def calculate_hash(self) -> str:
        """
        Calculate SHA-256 hash of this event
        Hash covers every field except current_hash
        """
        hash_data = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'user_id': self.user_id,
            'metadata': self.metadata
        }
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        """Verify that the current hash is correct"""
        return self.current_hash == self.calculate_hash()

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['event_type'] = self.event_type.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        data['event_type'] = AuditEventType(data['event_type'])
        return cls(**data)


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection

    Events written inside an atomic unit share the unit's fate: a rolled back
    operation leaves no audit record behind.
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events"):
        self.storage = storage
        self.table_name = table_name
        self._lock = threading.Lock()

    def _last_hash(self) -> str:
        events = self.storage.load_all(self.table_name)
        if not events:
            return ""
        # load_all preserves write order; created_at alone can tie
        return events[-1].get('current_hash', "")

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> AuditEvent:
        """
        Log an audit event chained to the previous one

        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited
            entity_id: ID of the entity
            metadata: Additional event-specific data
            user_id: Actor who initiated the action

        Returns:
            Created AuditEvent
        """
        with self._lock:
            now = datetime.now(timezone.utc)
            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=self._last_hash(),
                current_hash="",
                metadata=metadata or {},
                user_id=user_id
            )
            event.current_hash = event.calculate_hash()
            self.storage.save(self.table_name, event.id, event.to_dict())
            return event

    def get_events_for_entity(self, entity_type: str, entity_id: str,
                              limit: Optional[int] = None) -> List[AuditEvent]:
        """Events for one entity, oldest first"""
        events_data = self.storage.find(self.table_name, {
            'entity_type': entity_type,
            'entity_id': entity_id
        })
        events = [AuditEvent.from_dict(data) for data in events_data]
        if limit:
            events = events[-limit:]
        return events

    def get_events_by_type(self, event_type: AuditEventType) -> List[AuditEvent]:
        events_data = self.storage.find(self.table_name, {'event_type': event_type.value})
        return [AuditEvent.from_dict(data) for data in events_data]

    def get_events_by_actor(self, user_id: str) -> List[AuditEvent]:
        events_data = self.storage.find(self.table_name, {'user_id': user_id})
        return [AuditEvent.from_dict(data) for data in events_data]

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify every event hash and the continuity of the chain

        Returns:
            Dictionary with 'valid', 'total_events', 'hash_errors' and
            'chain_breaks'
        """
        events = [AuditEvent.from_dict(data)
                  for data in self.storage.load_all(self.table_name)]
        result = {
            'valid': True,
            'total_events': len(events),
            'hash_errors': [],
            'chain_breaks': []
        }

        previous_hash = ""
        for position, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'event_id': event.id,
                    'position': position
                })
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'event_id': event.id,
                    'position': position
                })
            previous_hash = event.current_hash

        return result

    def count_events(self) -> int:
        """Get total number of audit events"""
        return self.storage.count(self.table_name)
