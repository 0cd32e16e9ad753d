"""
Tests for participant selection.
"""

import pytest
import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../src'))

from domain.models import MessageInfo
from services.participants import (
    SelectionMode,
    extract_addresses,
    select_participants,
)


@pytest.fixture
def message():
    return MessageInfo(
        message_id='<m1@example.com>',
        mailbox='INBOX',
        from_address='"Ann Smith" <Ann@Example.com>',
        to_addresses=['Bob <bob@example.com>, carol@example.com'],
        cc_addresses=['dave@example.com', 'ann@example.com'],
    )


class TestExtractAddresses:
    """Test address header parsing."""

    def test_display_names_and_case(self):
        """Test addresses are extracted and lower-cased."""
        result = extract_addresses(['"Ann" <Ann@Example.com>, BOB@example.com'])

        assert result == ['ann@example.com', 'bob@example.com']

    def test_empty_values_dropped(self):
        """Test empty header values give no addresses."""
        assert extract_addresses(['', None]) == []

    def test_encoded_display_name(self):
        """Test RFC 2047 encoded names do not hide the address."""
        result = extract_addresses(['=?utf-8?q?J=C3=BCrgen?= <juergen@example.de>'])

        assert result == ['juergen@example.de']

    def test_encoded_comma_in_display_name(self):
        """Test an encoded comma in a display name does not split the address."""
        result = extract_addresses(['=?utf-8?q?Doe=2C_John?= <John@Example.com>, ann@example.com'])

        assert result == ['john@example.com', 'ann@example.com']


class TestSelectParticipants:
    """Test selection modes."""

    def test_sender_only(self, message):
        assert select_participants(message, SelectionMode.SENDER_ONLY) == ['ann@example.com']

    def test_recipients_only(self, message):
        """Test To and Cc, without sender."""
        result = select_participants(message, SelectionMode.RECIPIENTS_ONLY)

        assert result == ['bob@example.com', 'carol@example.com', 'dave@example.com', 'ann@example.com']

    def test_addressees_only(self, message):
        """Test To only."""
        result = select_participants(message, SelectionMode.ADDRESSEES_ONLY)

        assert result == ['bob@example.com', 'carol@example.com']

    def test_sender_and_recipients_deduplicated(self, message):
        """Test sender first and repeated addresses kept once."""
        result = select_participants(message, SelectionMode.SENDER_AND_RECIPIENTS)

        assert result == ['ann@example.com', 'bob@example.com', 'carol@example.com', 'dave@example.com']

    def test_mode_values(self):
        """Test mode names used in configuration."""
        assert SelectionMode('sender-only') is SelectionMode.SENDER_ONLY
        assert SelectionMode('addressees-only') is SelectionMode.ADDRESSEES_ONLY


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
