"""
Trigger extraction from contact notes and group names.

Scanning happens in three layers:
1. scan_triggers: every value introduced by one marker in one text
2. TriggerCollector: one participant's note plus group names
3. aggregate: every selected participant of a message, in order
"""

import logging
from typing import Dict, Iterable, List

from .models import TriggerKind, TriggerResultSet
from services.contacts import ContactNotFoundError

logger = logging.getLogger(__name__)

LINE_BREAKS = ('\n', '\r')


def _line_end(text: str, start: int) -> int:
    """Index of the first line break at or after start, else len(text)."""
    ends = [pos for pos in (text.find(brk, start) for brk in LINE_BREAKS) if pos != -1]
    return min(ends) if ends else len(text)


def scan_triggers(text: str, marker: str) -> List[str]:
    """
    Extract every value introduced by marker in text.

    A value runs from just after the marker to the end of its line.
    Scanning resumes right after each marker, so a marker that appears
    inside a captured value is found again and yields a second value.

    Args:
        text: Free text to scan (a note body or a group name)
        marker: Literal text introducing a value

    Returns:
        List[str]: Values in encounter order (possibly empty)

    Example:
        >>> scan_triggers("hi\\n@tag: work\\n@tag: urgent", "@tag: ")
        ['work', 'urgent']
    """
    if not text or not marker:
        return []

    values = []
    pos = text.find(marker)
    while pos != -1:
        start = pos + len(marker)
        values.append(text[start:_line_end(text, start)])
        pos = text.find(marker, start)
    return values


def scan_all(text: str, markers: Dict[TriggerKind, str]) -> TriggerResultSet:
    """Scan one text once per configured TriggerKind."""
    return TriggerResultSet({
        kind: scan_triggers(text, marker)
        for kind, marker in markers.items()
    })


class TriggerCollector:
    """
    Collects trigger values for a single participant.

    The contact's own note is scanned first; values found in the names of
    the groups the contact belongs to are appended after it, in group
    order. Groups never suppress personal values.
    """

    def __init__(self, directory, markers: Dict[TriggerKind, str]):
        """
        Initialize collector.

        Args:
            directory: Object with find_by_email(email) -> Contact
            markers: Marker text per TriggerKind to scan for
        """
        self.directory = directory
        self.markers = dict(markers)

    def collect(self, participant: str) -> TriggerResultSet:
        """
        Collect trigger values for one participant.

        Args:
            participant: Participant email address

        Returns:
            TriggerResultSet: Note values followed by group values

        Raises:
            ContactNotFoundError: If no contact matches the address
        """
        contact = self.directory.find_by_email(participant.lower())

        result = scan_all(contact.note, self.markers)
        for group in contact.groups:
            result = result.merged(scan_all(group.name, self.markers))

        logger.debug(f"Collected for {participant}: {result.to_dict()}")
        return result


def aggregate(participants: Iterable[str], collector: TriggerCollector) -> TriggerResultSet:
    """
    Merge trigger values of every participant, in participant order.

    A participant without a contact, or whose collection fails for any
    reason, contributes nothing; the remaining participants are still
    processed.

    Args:
        participants: Normalized participant addresses in selection order
        collector: Collector used for each participant

    Returns:
        TriggerResultSet: Combined values for the message
    """
    combined = TriggerResultSet()

    for participant in participants:
        try:
            result = collector.collect(participant)
        except ContactNotFoundError:
            logger.info(f"No contact for {participant}, skipping")
            continue
        except Exception as e:
            logger.warning(f"Failed to collect triggers for {participant}: {e}", exc_info=True)
            continue

        if result.is_empty:
            logger.debug(f"No triggers for {participant}")
            continue

        combined = combined.merged(result)

    return combined
