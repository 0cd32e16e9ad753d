"""
IMAP mail store.

This module implements the mailbox existence check and the message
mutations (move, relocate, read and write tags) against an IMAP server.
Tags are stored as IMAP keyword flags.

Usage:
    from integrations import imap_mailstore

    with imap_mailstore.connect(host, user, password) as store:
        handle = store.find_by_message_id('<abc@example.com>', 'INBOX')
        store.move(handle, 'Archive')
"""

import base64
import imaplib
import logging
import re
from dataclasses import dataclass
from typing import List, Sequence

logger = logging.getLogger(__name__)

# RFC 3501 atom: no atom-specials, no leading backslash (system flags)
KEYWORD_PATTERN = re.compile(r'^[^\s(){%*"\\\]]+$')

# System flags a client may set with STORE; \Recent is server-managed
STORABLE_SYSTEM_FLAGS = ('\\Seen', '\\Answered', '\\Flagged', '\\Deleted', '\\Draft')

LIST_WILDCARDS = ('*', '%')

LIST_RESPONSE_PATTERN = re.compile(
    r'^\((?P<flags>[^)]*)\) (?P<delimiter>"(?:[^"\\]|\\.)*"|NIL) (?P<name>.*)$'
)


# ============================================================================
# Custom Exception Classes
# ============================================================================

class MailStoreError(Exception):
    """Raised when an IMAP command fails."""
    pass


class MessageNotFoundError(MailStoreError):
    """Raised when no message with the given Message-ID is in a mailbox."""
    pass


class InvalidTagError(MailStoreError):
    """Raised when a tag cannot be stored as an IMAP keyword."""
    pass


@dataclass(frozen=True)
class MessageHandle:
    """
    Location of a message on the server.

    A handle is only valid for the mailbox it was obtained in; moving the
    message invalidates it.
    """
    mailbox: str
    uid: str


def _quote(value: str) -> str:
    """Quote a string argument for an IMAP command."""
    return '"' + value.replace('\\', '\\\\').replace('"', '\\"') + '"'


def _decode(value) -> str:
    if isinstance(value, bytes):
        return value.decode('utf-8', errors='replace')
    return str(value)


def encode_mailbox_name(name: str) -> str:
    """
    Encode a mailbox name in IMAP modified UTF-7 (RFC 3501 section 5.1.3).

    Printable ASCII is kept as is ('&' becomes '&-'); any other run of
    characters becomes '&' + modified base64 of its UTF-16BE form + '-'.

    Example:
        >>> encode_mailbox_name('Réunions')
        'R&AOk-unions'
    """
    encoded = []
    pending = []

    def flush():
        if pending:
            chunk = base64.b64encode(''.join(pending).encode('utf-16-be')).decode('ascii')
            encoded.append('&' + chunk.rstrip('=').replace('/', ',') + '-')
            pending.clear()

    for char in name:
        if 0x20 <= ord(char) <= 0x7e:
            flush()
            encoded.append('&-' if char == '&' else char)
        else:
            pending.append(char)
    flush()

    return ''.join(encoded)


def _mailbox_arg(name: str) -> str:
    return _quote(encode_mailbox_name(name))


def _unquote(value: str) -> str:
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return re.sub(r'\\(.)', r'\1', value[1:-1])
    return value


def _listed_name(item) -> str:
    """Extract the (still encoded) mailbox name from one LIST response item."""
    if isinstance(item, tuple):
        # Name sent as a literal: (b'(\\HasNoChildren) "/" {8}', b'Projects')
        return _decode(item[1])
    match = LIST_RESPONSE_PATTERN.match(_decode(item))
    if match is None:
        return ''
    return _unquote(match.group('name'))


class ImapMailStore:
    """Mail store operations over an authenticated IMAP connection."""

    def __init__(self, conn: imaplib.IMAP4):
        self.conn = conn

    def __enter__(self) -> 'ImapMailStore':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        try:
            self.conn.logout()
        except (imaplib.IMAP4.error, OSError) as e:
            logger.warning(f"IMAP logout failed: {e}")

    def _check(self, status: str, data, action: str) -> None:
        if status != 'OK':
            detail = _decode(data[0]) if data and data[0] is not None else ''
            raise MailStoreError(f"IMAP {action} failed: {status} {detail}".strip())

    def _select(self, mailbox: str) -> None:
        status, data = self.conn.select(_mailbox_arg(mailbox))
        self._check(status, data, f"SELECT {mailbox}")

    def mailbox_exists(self, path: str) -> bool:
        """
        Check whether a mailbox exists.

        Paths holding the LIST wildcards '*' or '%' never exist; otherwise the
        server must list a mailbox with exactly this name.

        Args:
            path: Mailbox path as shown by LIST

        Returns:
            bool: True if the server lists the mailbox
        """
        if any(w in path for w in LIST_WILDCARDS):
            logger.info(f"Mailbox path {path!r} contains a LIST wildcard, ignoring")
            return False

        encoded = encode_mailbox_name(path)
        try:
            status, data = self.conn.list('""', _quote(encoded))
        except imaplib.IMAP4.error as e:
            logger.warning(f"IMAP LIST failed for {path}: {e}")
            return False
        if status != 'OK':
            logger.warning(f"IMAP LIST failed for {path}: {status}")
            return False

        names = [_listed_name(item) for item in data if item is not None]
        if encoded.upper() == 'INBOX':
            return any(name.upper() == 'INBOX' for name in names)
        return encoded in names

    def find_by_message_id(self, message_id: str, mailbox: str) -> MessageHandle:
        """
        Locate a message by its Message-ID header.

        Args:
            message_id: RFC 5322 Message-ID
            mailbox: Mailbox to search

        Returns:
            MessageHandle: Handle to the most recent match

        Raises:
            MessageNotFoundError: If no message matches
            MailStoreError: If the server rejects a command
        """
        self._select(mailbox)
        status, data = self.conn.uid('SEARCH', 'HEADER', 'Message-ID', _quote(message_id))
        self._check(status, data, f"SEARCH in {mailbox}")

        uids = data[0].split() if data and data[0] else []
        if not uids:
            raise MessageNotFoundError(f"Message {message_id} not found in {mailbox}")

        return MessageHandle(mailbox=mailbox, uid=_decode(uids[-1]))

    def relocate_by_message_id(self, message_id: str, mailbox: str) -> MessageHandle:
        """Obtain a fresh handle for a message after it was moved."""
        handle = self.find_by_message_id(message_id, mailbox)
        logger.info(f"Relocated {message_id} in {mailbox} (uid={handle.uid})")
        return handle

    def move(self, handle: MessageHandle, mailbox: str) -> None:
        """
        Move a message to another mailbox.

        Uses UID MOVE when the server supports it, otherwise copies the
        message and expunges the original. With UIDPLUS only the original
        is expunged; without it a plain EXPUNGE also removes any other
        message already marked \\Deleted in the source mailbox.

        Raises:
            MailStoreError: If the server rejects a command
        """
        self._select(handle.mailbox)
        target = _mailbox_arg(mailbox)

        if 'MOVE' in self.conn.capabilities:
            status, data = self.conn.uid('MOVE', handle.uid, target)
            self._check(status, data, f"MOVE to {mailbox}")
            return

        status, data = self.conn.uid('COPY', handle.uid, target)
        self._check(status, data, f"COPY to {mailbox}")
        status, data = self.conn.uid('STORE', handle.uid, '+FLAGS', '(\\Deleted)')
        self._check(status, data, "STORE \\Deleted")

        if 'UIDPLUS' in self.conn.capabilities:
            status, data = self.conn.uid('EXPUNGE', handle.uid)
            self._check(status, data, f"UID EXPUNGE uid={handle.uid}")
            return

        logger.warning(
            f"Server lacks UIDPLUS: plain EXPUNGE in {handle.mailbox} removes every "
            f"message marked \\Deleted"
        )
        status, data = self.conn.expunge()
        self._check(status, data, "EXPUNGE")

    def _fetch_flags(self, handle: MessageHandle) -> List[str]:
        self._select(handle.mailbox)
        status, data = self.conn.uid('FETCH', handle.uid, '(FLAGS)')
        self._check(status, data, f"FETCH FLAGS uid={handle.uid}")

        for item in data:
            response = item[0] if isinstance(item, tuple) else item
            if not response:
                continue
            if isinstance(response, str):
                response = response.encode('utf-8')
            if b'FLAGS' in response:
                return [_decode(f) for f in imaplib.ParseFlags(response)]

        raise MessageNotFoundError(f"Message uid={handle.uid} not found in {handle.mailbox}")

    def get_tags(self, handle: MessageHandle) -> List[str]:
        """
        Read the tags (keyword flags) of a message, in server order.

        System flags such as \\Seen are not tags.
        """
        return [f for f in self._fetch_flags(handle) if not f.startswith('\\')]

    def set_tags(self, handle: MessageHandle, tags: Sequence[str]) -> None:
        """
        Replace the tags of a message, keeping its storable system flags.

        \\Recent is set by the server and cannot be sent in STORE, so it is
        never written back.

        Raises:
            InvalidTagError: If a tag is not a valid IMAP keyword
            MailStoreError: If the server rejects a command
        """
        invalid = [t for t in tags if not KEYWORD_PATTERN.match(t)]
        if invalid:
            raise InvalidTagError(f"Tags cannot be stored as IMAP keywords: {invalid}")

        storable = {f.lower() for f in STORABLE_SYSTEM_FLAGS}
        system_flags = [f for f in self._fetch_flags(handle) if f.lower() in storable]
        flag_list = '(' + ' '.join(system_flags + list(tags)) + ')'

        status, data = self.conn.uid('STORE', handle.uid, 'FLAGS', flag_list)
        self._check(status, data, f"STORE FLAGS uid={handle.uid}")


def connect(host: str, username: str, password: str, port: int = 993) -> ImapMailStore:
    """
    Connect and authenticate to the IMAP server.

    Raises:
        MailStoreError: If the connection or login fails
    """
    logger.info(f"Connecting to IMAP server {host}:{port} as {username}")
    try:
        conn = imaplib.IMAP4_SSL(host, port, timeout=30)
        conn.login(username, password)
    except (imaplib.IMAP4.error, OSError) as e:
        raise MailStoreError(f"IMAP connection to {host}:{port} failed: {e}")
    return ImapMailStore(conn)
