"""
Data models for the trigger resolution domain.

These type-safe data structures define clear contracts between components.
Every instance is built fresh per message and discarded once the mutation
plan has been handed to the mail store.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

FORCE_MARKER = '!'


class TriggerKind(Enum):
    """
    Annotation classes recognised in contact notes and group names.

    Declaration order is significant: result sets are always iterated
    in this order.
    """
    TAG = 'tag'
    MAILBOX = 'mailbox'
    PROJECT = 'project'  # reserved, collected but never acted on


class MutationState(Enum):
    """States visited while applying a mutation plan to a message."""
    RESOLVED = 'resolved'
    MOVED = 'moved'
    RELOCATED = 'relocated'
    TAGGED = 'tagged'
    DONE = 'done'


@dataclass(frozen=True)
class TriggerResultSet:
    """
    Extracted trigger values for every TriggerKind.

    Instances are never mutated; merging returns a new result set.

    Attributes:
        values: Mapping of TriggerKind to its ordered value list
    """
    values: Dict[TriggerKind, List[str]] = field(default_factory=dict)

    def __post_init__(self):
        normalized = {kind: list(self.values.get(kind, [])) for kind in TriggerKind}
        object.__setattr__(self, 'values', normalized)

    def __getitem__(self, kind: TriggerKind) -> List[str]:
        return list(self.values[kind])

    @property
    def is_empty(self) -> bool:
        """True when no kind has any value."""
        return not any(self.values.values())

    def merged(self, other: 'TriggerResultSet') -> 'TriggerResultSet':
        """
        Append another result set after this one, kind by kind.

        Args:
            other: Values to place after the values already held

        Returns:
            TriggerResultSet: New result set holding both
        """
        return TriggerResultSet({
            kind: self.values[kind] + other.values[kind]
            for kind in TriggerKind
        })

    def to_dict(self) -> Dict[str, List[str]]:
        return {kind.value: list(items) for kind, items in self.values.items()}


@dataclass(frozen=True)
class MailboxCandidate:
    """
    A raw mailbox trigger value split into force flag and path.

    Attributes:
        raw: Value as extracted from the note or group name
        forced: True when the value carried the force marker
        path: Mailbox path with the force marker removed
    """
    raw: str
    forced: bool
    path: str

    @classmethod
    def parse(cls, value: str) -> 'MailboxCandidate':
        if value.startswith(FORCE_MARKER):
            return cls(raw=value, forced=True, path=value[len(FORCE_MARKER):])
        return cls(raw=value, forced=False, path=value)


@dataclass
class TagDelta:
    """
    Existing tags of a message plus the newly resolved ones.

    Attributes:
        tags: Resulting tag list (existing tags first, order preserved)
        added: Tags that were not present before
        primary_new_tag: Last added tag that is not the waiting tag
    """
    tags: List[str]
    added: List[str] = field(default_factory=list)
    primary_new_tag: Optional[str] = None

    @property
    def dirty(self) -> bool:
        """True when at least one new tag was added."""
        return bool(self.added)


@dataclass
class MessageInfo:
    """
    Message description delivered in the SQS record body.

    Attributes:
        message_id: RFC 5322 Message-ID, stable across mailboxes
        mailbox: Mailbox the message currently lives in
        uid: IMAP UID in that mailbox, if the producer knows it
        from_address: From header value
        to_addresses: To header values
        cc_addresses: Cc header values
        subject: Subject line
        body: Plain text body (only used for task text)
    """
    message_id: str
    mailbox: str
    uid: Optional[str] = None
    from_address: str = ''
    to_addresses: List[str] = field(default_factory=list)
    cc_addresses: List[str] = field(default_factory=list)
    subject: str = ''
    body: str = ''

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'MessageInfo':
        """
        Parse an SQS record whose body describes one message.

        Args:
            record: SQS record dict

        Returns:
            MessageInfo: Parsed message description

        Raises:
            ValueError: If messageId or mailbox is missing
            json.JSONDecodeError: If the body is not JSON
        """
        payload = json.loads(record['body'])

        message_id = payload.get('messageId')
        mailbox = payload.get('mailbox')
        if not message_id or not mailbox:
            raise ValueError("Message record missing 'messageId' or 'mailbox'")

        uid = payload.get('uid')
        return cls(
            message_id=message_id,
            mailbox=mailbox,
            uid=str(uid) if uid is not None else None,
            from_address=payload.get('from', '') or '',
            to_addresses=_as_header_list(payload.get('to')),
            cc_addresses=_as_header_list(payload.get('cc')),
            subject=payload.get('subject', '') or '',
            body=payload.get('body', '') or '',
        )


def _as_header_list(value: Any) -> List[str]:
    """Normalize a header field that may be a list, a string or missing."""
    if isinstance(value, list):
        return [v for v in value if v]
    if isinstance(value, str) and value:
        return [value]
    return []


@dataclass
class MutationPlan:
    """
    Resolved actions for one message.

    Attributes:
        source_mailbox: Mailbox the message is in before processing
        target_mailbox: Mailbox to move to (None means no move)
        tag_delta: Tag consolidation outcome
    """
    source_mailbox: str
    target_mailbox: Optional[str]
    tag_delta: TagDelta

    @property
    def needs_move(self) -> bool:
        return self.target_mailbox is not None and self.target_mailbox != self.source_mailbox

    @property
    def needs_tagging(self) -> bool:
        return self.tag_delta.dirty

    def describe(self) -> str:
        """One-line summary for logging."""
        target = self.target_mailbox or '-'
        return (
            f"target={target}, tags={self.tag_delta.tags}, "
            f"added={self.tag_delta.added}, dirty={self.tag_delta.dirty}"
        )


@dataclass
class ProcessingResult:
    """
    Result of processing one message.

    This explicit result type makes success/failure handling clear
    and prevents exceptions from being used for control flow.

    Attributes:
        success: Whether processing succeeded
        message_id: SQS message identifier
        plan: Mutation plan (if resolution succeeded)
        states: Mutation states visited, in order
        dry_run: Whether mutations were suppressed
        task_key: S3 key of the submitted task text, if any
        error_message: Error description (if processing failed)
    """
    success: bool
    message_id: str
    plan: Optional[MutationPlan] = None
    states: List[MutationState] = field(default_factory=list)
    dry_run: bool = False
    task_key: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def moved(self) -> bool:
        return MutationState.MOVED in self.states

    @property
    def tagged(self) -> bool:
        return MutationState.TAGGED in self.states

    def __repr__(self) -> str:
        """Human-readable representation for logging."""
        if self.success:
            return f"ProcessingResult(success=True, message_id={self.message_id})"
        else:
            return f"ProcessingResult(success=False, message_id={self.message_id}, error={self.error_message})"


def state_names(states: Iterable[MutationState]) -> List[str]:
    return [s.value for s in states]
