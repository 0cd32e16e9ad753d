"""
Contact directory used to look up participants.

The directory is a JSON export loaded with the following priority:
1. S3 (CONTACTS_BUCKET/CONTACTS_KEY, for updates without redeploy)
2. Local filesystem (CONTACTS_FILE)

The parsed directory is cached in memory for warm Lambda invocations with TTL.

Export format:
    {"contacts": [{"name": "Ann", "emails": ["ann@example.com"],
                   "note": "@tag: clients", "groups": ["@box: Clients"]}]}
"""

import json
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from botocore.exceptions import ClientError

from services import s3 as s3_service

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = int(os.environ.get('CONTACTS_CACHE_TTL', '300'))

CONTACTS_BUCKET = os.environ.get('CONTACTS_BUCKET')
CONTACTS_KEY = os.environ.get('CONTACTS_KEY', 'contacts/contacts.json')
CONTACTS_FILE = Path(os.environ.get(
    'CONTACTS_FILE',
    str(Path(__file__).parent.parent / 'contacts.json')
))

# Module-level cache: (directory, timestamp)
_directory_cache: Optional[Tuple['ContactDirectory', float]] = None


class ContactNotFoundError(Exception):
    """Raised when no contact matches an email address."""
    pass


class DirectoryLoadError(Exception):
    """Raised when the directory export cannot be loaded or parsed."""
    pass


@dataclass(frozen=True)
class Group:
    """A contact group; only its name is scanned for triggers."""
    name: str


@dataclass
class Contact:
    """
    Contact record.

    Attributes:
        name: Display name
        emails: Lower-cased email addresses
        note: Free-text note
        groups: Groups the contact belongs to, in directory order
    """
    name: str
    emails: List[str] = field(default_factory=list)
    note: str = ''
    groups: List[Group] = field(default_factory=list)


class ContactDirectory:
    """In-memory contact directory with lookup by email."""

    def __init__(self, contacts: List[Contact]):
        self.contacts = list(contacts)

    def __len__(self) -> int:
        return len(self.contacts)

    def find_by_email(self, email: str) -> Contact:
        """
        Find the first contact holding exactly this address.

        Matching is case-sensitive against the stored (lower-cased)
        addresses, so callers must pass lower-cased input.

        Args:
            email: Normalized email address

        Returns:
            Contact: Matching contact

        Raises:
            ContactNotFoundError: If no contact holds the address
        """
        for contact in self.contacts:
            if email in contact.emails:
                return contact
        raise ContactNotFoundError(f"No contact for {email}")


def _list_field(entry: Dict[str, Any], name: str, index: int) -> List[Any]:
    value = entry.get(name)
    if value is None:
        return []
    if isinstance(value, str) and name == 'emails':
        return [value]
    if not isinstance(value, list):
        raise DirectoryLoadError(
            f"Contact entry {index}: '{name}' must be a list, got {type(value).__name__}"
        )
    return value


def _parse_contact(entry: Dict[str, Any], index: int) -> Contact:
    emails = _list_field(entry, 'emails', index)
    if any(e is not None and not isinstance(e, str) for e in emails):
        raise DirectoryLoadError(f"Contact entry {index}: emails must be strings")

    groups = _list_field(entry, 'groups', index)
    return Contact(
        name=entry.get('name') or '',
        emails=[e.strip().lower() for e in emails if e and e.strip()],
        note=str(entry.get('note') or ''),
        groups=[Group(name=str(g)) for g in groups if g is not None],
    )


def parse_directory(document: Any) -> ContactDirectory:
    """
    Build a directory from the parsed JSON export.

    Args:
        document: Decoded JSON document

    Returns:
        ContactDirectory: Parsed directory

    Raises:
        DirectoryLoadError: If the document does not have the expected shape
    """
    if not isinstance(document, dict) or not isinstance(document.get('contacts'), list):
        raise DirectoryLoadError("Contact export must be an object with a 'contacts' list")

    contacts = []
    for index, entry in enumerate(document['contacts']):
        if not isinstance(entry, dict):
            raise DirectoryLoadError(f"Contact entry {index} is not an object")
        contacts.append(_parse_contact(entry, index))

    return ContactDirectory(contacts)


def _load_from_s3() -> str:
    if not CONTACTS_BUCKET:
        raise ValueError("CONTACTS_BUCKET environment variable not set")

    logger.info(f"Loading contacts from S3: s3://{CONTACTS_BUCKET}/{CONTACTS_KEY}")
    content = s3_service.fetch_object(CONTACTS_BUCKET, CONTACTS_KEY).decode('utf-8')
    logger.info(f"Loaded contacts from S3: {len(content)} characters")
    return content


def _load_from_filesystem() -> str:
    logger.info(f"Loading contacts from filesystem: {CONTACTS_FILE}")

    with open(CONTACTS_FILE, 'r', encoding='utf-8') as f:
        content = f.read()

    logger.info(f"Loaded contacts from filesystem: {len(content)} characters")
    return content


def load_directory(use_cache: bool = True) -> ContactDirectory:
    """
    Load the contact directory with caching and fallback.

    Priority: Cache -> S3 -> Local filesystem

    Args:
        use_cache: Use cached directory if still fresh (default: True)

    Returns:
        ContactDirectory: Loaded directory

    Raises:
        DirectoryLoadError: If no source is available or the export is invalid
    """
    global _directory_cache
    current_time = time.time()

    if use_cache and _directory_cache is not None:
        cached_directory, cached_time = _directory_cache
        age_seconds = current_time - cached_time
        if age_seconds < CACHE_TTL_SECONDS:
            logger.info(
                f"Using cached contacts ({len(cached_directory)} contact(s), "
                f"age: {int(age_seconds)}s, TTL: {CACHE_TTL_SECONDS}s)"
            )
            return cached_directory
        logger.info(f"Contacts cache expired (age: {int(age_seconds)}s), reloading...")

    content = None

    if CONTACTS_BUCKET:
        try:
            content = _load_from_s3()
        except (ClientError, ValueError) as e:
            logger.info(
                f"S3 contacts not available ({e.__class__.__name__}), "
                f"falling back to local filesystem"
            )

    if content is None:
        try:
            content = _load_from_filesystem()
        except FileNotFoundError:
            logger.error(f"Contacts not found. Expected location: {CONTACTS_FILE}")
            raise DirectoryLoadError("Contact export not found in S3 or local filesystem")

    try:
        document = json.loads(content)
    except json.JSONDecodeError as e:
        raise DirectoryLoadError(f"Contact export is not valid JSON: {e}")

    directory = parse_directory(document)
    logger.info(f"Contact directory ready: {len(directory)} contact(s)")

    _directory_cache = (directory, current_time)
    return directory


def clear_cache() -> None:
    """
    Clear the directory cache.

    Useful for testing or forcing a reload from S3.
    """
    global _directory_cache
    _directory_cache = None
    logger.info("Contacts cache cleared")
