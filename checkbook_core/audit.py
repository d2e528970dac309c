"""
Audit Trail Module

Hash-chained immutable audit log with SHA-256 for tamper detection.
Every mutating action of the checkbook engine is reported to an AuditSink;
the default sink stores events in the ``audit_events`` table.
"""

import hashlib
import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
from decimal import Decimal
import uuid

from .storage import StorageInterface, StorageRecord, DuplicateKeyError
from .logging_config import get_logger, log_action


logger = get_logger("checkbook.audit")


class AuditAction(Enum):
    """Actions reported to the audit sink"""
    # Bank events
    CREATE_BANK = "CREATE_BANK"
    UPDATE_BANK = "UPDATE_BANK"
    DELETE_BANK = "DELETE_BANK"

    # Checkbook events
    CREATE_CHECKBOOK = "CREATE_CHECKBOOK"
    UPDATE_CHECKBOOK = "UPDATE_CHECKBOOK"
    DELETE_CHECKBOOK = "DELETE_CHECKBOOK"

    # Check events
    PRINT_CHECK = "PRINT_CHECK"
    UPDATE_CHECK_STATUS = "UPDATE_CHECK_STATUS"
    EXPORT_HISTORY = "EXPORT_HISTORY"

    # Region events
    CREATE_REGION = "CREATE_REGION"
    UPDATE_REGION = "UPDATE_REGION"
    DELETE_REGION = "DELETE_REGION"

    # Supplier events
    CREATE_SUPPLIER = "CREATE_SUPPLIER"
    UPDATE_SUPPLIER = "UPDATE_SUPPLIER"
    DELETE_SUPPLIER = "DELETE_SUPPLIER"


def _convert_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    elif isinstance(value, (datetime, date)):
        return value.isoformat()
    elif isinstance(value, Enum):
        return value.value
    elif isinstance(value, dict):
        return {k: _convert_value(v) for k, v in value.items()}
    elif isinstance(value, (list, tuple)):
        return [_convert_value(v) for v in value]
    return value


class AuditSink(ABC):
    """
    Receiver of audit records

    Fire-and-forget from the engine's point of view: callers log a failing
    sink as a warning and never roll back the business operation.
    """

    @abstractmethod
    def record(
        self,
        actor_id: Optional[str],
        action: AuditAction,
        entity_type: str,
        entity_id: Optional[str],
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        pass


class NullAuditSink(AuditSink):
    """Sink that drops every record (audit disabled)"""

    def record(self, actor_id, action, entity_type, entity_id, details=None) -> None:
        return None


def notify(
    sink: AuditSink,
    actor_id: Optional[str],
    action: AuditAction,
    entity_type: str,
    entity_id: Optional[str],
    details: Optional[Dict[str, Any]] = None
) -> None:
    """Deliver a record to the sink; a failing sink only produces a warning"""
    try:
        sink.record(actor_id, action, entity_type, entity_id, details)
    except Exception as e:
        log_action(
            logger, "warning", f"Audit sink failed for {action.value}: {e}",
            user_id=actor_id, action=action.value,
            resource=f"{entity_type}:{entity_id}"
        )


@dataclass
class AuditEvent(StorageRecord):
    """
    Immutable audit event with hash chaining for tamper detection
    """
    action: AuditAction
    entity_type: str            # bank, checkbook, check, region, supplier, export
    entity_id: Optional[str]
    previous_hash: str          # Hash of previous audit event for chaining
    current_hash: str           # SHA-256 hash of this event
    sequence: int               # Position in the chain, starting at 1
    details: Dict[str, Any]
    actor_id: Optional[str] = None

    def __post_init__(self):
        # Ensure details are JSON serializable
        self.details = _convert_value(self.details or {})

    def calculate_hash(self) -> str:
        """
        Calculate SHA-256 hash of this event
        Hash includes all fields except current_hash to prevent circular reference
        """
        hash_data = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'action': self.action.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'sequence': self.sequence,
            'actor_id': self.actor_id,
            'details': self.details
        }

        # Create deterministic JSON string
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        """Verify that the current hash is correct"""
        return self.current_hash == self.calculate_hash()

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['action'] = self.action.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        if isinstance(data['created_at'], str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        if isinstance(data['updated_at'], str):
            data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        if isinstance(data['action'], str):
            data['action'] = AuditAction(data['action'])
        return cls(**data)


class AuditTrail(AuditSink):
    """
    Hash-chained audit trail for tamper detection

    The tail of the chain lives in a one-row head table. Appending an event
    locks that row, so writers on separate connections take turns and the
    chain never forks.
    """

    HEAD_ID = "head"

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events"):
        self.storage = storage
        self.table_name = table_name
        self.head_table = f"{table_name}_head"
        self._last_hash: Optional[str] = None
        self._last_sequence = 0
        self._load_last_hash()

    def _scan_tail(self) -> Dict[str, Any]:
        """Find the tail by scanning every event"""
        events = self.storage.load_all(self.table_name)
        if not events:
            return {'sequence': 0, 'current_hash': ""}
        latest = max(events, key=lambda x: x.get('sequence', 0))
        return {'sequence': latest.get('sequence', 0), 'current_hash': latest.get('current_hash') or ""}

    def _load_last_hash(self) -> None:
        """Load the chain head, creating it from existing events if missing"""
        head = self.storage.load(self.head_table, self.HEAD_ID)
        if head is None:
            head = self._scan_tail()
            try:
                self.storage.insert(self.head_table, self.HEAD_ID, head)
            except DuplicateKeyError:
                head = self.storage.load(self.head_table, self.HEAD_ID) or head
        self._last_hash = head['current_hash'] or None
        self._last_sequence = head['sequence']

    def record(
        self,
        actor_id: Optional[str],
        action: AuditAction,
        entity_type: str,
        entity_id: Optional[str],
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        self.log_event(action, entity_type, entity_id, details, actor_id)

    def log_event(
        self,
        action: AuditAction,
        entity_type: str,
        entity_id: Optional[str],
        details: Optional[Dict[str, Any]] = None,
        actor_id: Optional[str] = None
    ) -> AuditEvent:
        """
        Log an audit event with hash chaining

        Args:
            action: Audited action
            entity_type: Type of entity being audited
            entity_id: ID of the entity (None for collection-level actions)
            details: Additional action-specific data
            actor_id: ID of user who initiated the action

        Returns:
            Created AuditEvent
        """
        with self.storage.atomic():
            head = self.storage.load_for_update(self.head_table, self.HEAD_ID)
            if head is None:
                head = self._scan_tail()

            now = datetime.now(timezone.utc)
            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=head['current_hash'] or "",
                current_hash="",
                sequence=head['sequence'] + 1,
                details=details or {},
                actor_id=actor_id
            )
            event.current_hash = event.calculate_hash()

            self.storage.insert(self.table_name, event.id, event.to_dict())
            self.storage.save(self.head_table, self.HEAD_ID, {
                'sequence': event.sequence,
                'current_hash': event.current_hash
            })

        self._last_hash = event.current_hash
        self._last_sequence = event.sequence
        return event

    def _load_events(self) -> List[AuditEvent]:
        events = [AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)]
        events.sort(key=lambda x: x.sequence)
        return events

    def get_events_for_entity(
        self,
        entity_type: str,
        entity_id: str,
        limit: Optional[int] = None
    ) -> List[AuditEvent]:
        """
        Get all audit events for a specific entity

        Args:
            entity_type: Type of entity
            entity_id: ID of entity
            limit: Maximum number of events to return (most recent kept)

        Returns:
            List of AuditEvent objects in chain order
        """
        events_data = self.storage.find(self.table_name, {
            'entity_type': entity_type,
            'entity_id': entity_id
        })
        events = [AuditEvent.from_dict(data) for data in events_data]
        events.sort(key=lambda x: x.sequence)

        if limit:
            events = events[-limit:]
        return events

    def get_events_by_action(
        self,
        action: AuditAction,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[AuditEvent]:
        """Get audit events of one action, optionally within a time range"""
        events = [e for e in self._load_events() if e.action == action]
        return self._window(events, start_time, end_time, limit)

    def get_all_events(
        self,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[AuditEvent]:
        """Get all audit events within time range"""
        return self._window(self._load_events(), start_time, end_time, limit)

    @staticmethod
    def _window(
        events: List[AuditEvent],
        start_time: Optional[datetime],
        end_time: Optional[datetime],
        limit: Optional[int]
    ) -> List[AuditEvent]:
        if start_time:
            events = [e for e in events if e.created_at >= start_time]
        if end_time:
            events = [e for e in events if e.created_at <= end_time]
        if limit:
            events = events[-limit:]
        return events

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain

        Returns:
            Dictionary with integrity check results
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': [],
            'details': {}
        }

        events = self._load_events()
        if not events:
            return result

        result['total_events'] = len(events)

        previous_hash = ""
        for i, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'event_id': event.id,
                    'position': i,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': event.previous_hash
                })
            previous_hash = event.current_hash

        result['details'] = {
            'first_event_time': events[0].created_at.isoformat(),
            'last_event_time': events[-1].created_at.isoformat(),
            'actions': sorted(set(e.action.value for e in events)),
            'entity_types': sorted(set(e.entity_type for e in events))
        }
        return result

    def get_event_by_id(self, event_id: str) -> Optional[AuditEvent]:
        """Get a specific audit event by ID"""
        event_data = self.storage.load(self.table_name, event_id)
        if event_data:
            return AuditEvent.from_dict(event_data)
        return None

    def count_events(self) -> int:
        """Get total number of audit events"""
        return self.storage.count(self.table_name)

    def get_latest_hash(self) -> Optional[str]:
        """Get the hash of the most recent audit event"""
        head = self.storage.load(self.head_table, self.HEAD_ID)
        if head is None:
            return self._last_hash
        return head["current_hash"] or None
