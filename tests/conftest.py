"""
Pytest configuration and fixtures for all tests.
"""

import os
import sys
from typing import Dict, List

import pytest

# Add src to Python path before any imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../src'))

# Set up test environment variables before importing any modules
os.environ.setdefault('AWS_DEFAULT_REGION', 'us-west-2')
os.environ.setdefault('ENVIRONMENT', 'test')
os.environ.setdefault('LOG_LEVEL', 'INFO')

from integrations.imap_mailstore import MessageHandle  # noqa: E402
from services.contacts import Contact, ContactDirectory, Group  # noqa: E402


class RecordingMailStore:
    """
    In-memory mail store that records every call in order.

    Messages are keyed by Message-ID; a move gives the message a new uid
    so handles obtained before the move become stale.
    """

    def __init__(self, mailboxes: List[str], messages: Dict[str, Dict]):
        self.mailboxes = set(mailboxes)
        self.messages = messages
        self.calls = []
        self._next_uid = 100

    def mailbox_exists(self, path):
        self.calls.append(('mailbox_exists', path))
        return path in self.mailboxes

    def find_by_message_id(self, message_id, mailbox):
        self.calls.append(('find_by_message_id', message_id, mailbox))
        return self._handle(message_id, mailbox)

    def relocate_by_message_id(self, message_id, mailbox):
        self.calls.append(('relocate_by_message_id', message_id, mailbox))
        return self._handle(message_id, mailbox)

    def move(self, handle, mailbox):
        self.calls.append(('move', handle, mailbox))
        message = self._by_handle(handle)
        self._next_uid += 1
        message['mailbox'] = mailbox
        message['uid'] = str(self._next_uid)

    def get_tags(self, handle):
        self.calls.append(('get_tags', handle))
        return list(self._by_handle(handle)['tags'])

    def set_tags(self, handle, tags):
        self.calls.append(('set_tags', handle, list(tags)))
        self._by_handle(handle)['tags'] = list(tags)

    @property
    def call_names(self):
        return [call[0] for call in self.calls]

    def _handle(self, message_id, mailbox):
        message = self.messages[message_id]
        if message['mailbox'] != mailbox:
            raise LookupError(f"{message_id} not in {mailbox}")
        return MessageHandle(mailbox=mailbox, uid=message['uid'])

    def _by_handle(self, handle):
        for message in self.messages.values():
            if message['mailbox'] == handle.mailbox and message['uid'] == handle.uid:
                return message
        raise LookupError(f"Stale handle: {handle}")


@pytest.fixture
def directory():
    """Contact directory with personal and group triggers."""
    return ContactDirectory([
        Contact(
            name='Ann',
            emails=['ann@example.com'],
            note='Client since 2019\n@tag: clients\n@box: Clients',
            groups=[Group(name='@tag: vip'), Group(name='Friends')],
        ),
        Contact(
            name='Bob',
            emails=['bob@example.com', 'robert@example.org'],
            note='@tag: billing\n@box: !Finance',
            groups=[],
        ),
        Contact(
            name='Carol',
            emails=['carol@example.com'],
            note='no triggers here',
            groups=[Group(name='@box: Lists')],
        ),
    ])


@pytest.fixture
def mail_store():
    """Mail store holding one message in INBOX."""
    return RecordingMailStore(
        mailboxes=['INBOX', 'Clients', 'Finance', 'Lists', 'Archive'],
        messages={
            '<m1@example.com>': {'mailbox': 'INBOX', 'uid': '7', 'tags': ['work']},
        },
    )


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Set up test environment variables for all tests."""
    yield
