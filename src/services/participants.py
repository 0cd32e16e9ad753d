"""
Participant selection for messages.

This module turns a message's address headers into the ordered list of
lower-cased participant addresses that are looked up in the contact
directory.
"""

import logging
from email.utils import getaddresses
from enum import Enum
from typing import Iterable, List

logger = logging.getLogger(__name__)


class SelectionMode(Enum):
    """Which participants of a message are scanned for triggers."""
    SENDER_ONLY = 'sender-only'
    RECIPIENTS_ONLY = 'recipients-only'
    ADDRESSEES_ONLY = 'addressees-only'
    SENDER_AND_RECIPIENTS = 'sender-and-recipients'


def extract_addresses(header_values: Iterable[str]) -> List[str]:
    """
    Extract lower-cased email addresses from address header values.

    Args:
        header_values: Raw header values (each may hold several addresses)

    Returns:
        List[str]: Addresses in header order, empty entries dropped

    Example:
        >>> extract_addresses(['"Ann" <Ann@Example.com>, bob@example.com'])
        ['ann@example.com', 'bob@example.com']
    """
    # Split before any RFC 2047 decoding; a decoded name may contain commas
    raw = [v for v in header_values if v]
    return [addr.strip().lower() for _, addr in getaddresses(raw) if addr.strip()]


def select_participants(message, mode: SelectionMode) -> List[str]:
    """
    Select participant addresses of a message.

    Order is sender, then To, then Cc (as the mode allows). An address
    appearing more than once is kept at its first position only.

    Args:
        message: MessageInfo-like object with from_address, to_addresses
                 and cc_addresses
        mode: Selection mode

    Returns:
        List[str]: Normalized participant addresses
    """
    selected = []

    if mode in (SelectionMode.SENDER_ONLY, SelectionMode.SENDER_AND_RECIPIENTS):
        selected.extend(extract_addresses([message.from_address]))

    if mode in (SelectionMode.RECIPIENTS_ONLY, SelectionMode.ADDRESSEES_ONLY,
                SelectionMode.SENDER_AND_RECIPIENTS):
        selected.extend(extract_addresses(message.to_addresses))

    if mode in (SelectionMode.RECIPIENTS_ONLY, SelectionMode.SENDER_AND_RECIPIENTS):
        selected.extend(extract_addresses(message.cc_addresses))

    participants = list(dict.fromkeys(selected))
    logger.info(f"Selected {len(participants)} participant(s) ({mode.value}): {participants}")
    return participants
