"""
Conflict resolution for aggregated trigger values.

Mailbox values compete for a single target mailbox; tag values are merged
into the message's existing tag list.
"""

import logging
from typing import Callable, Iterable, List, Optional

from .models import MailboxCandidate, TagDelta

logger = logging.getLogger(__name__)


def resolve_mailbox(
    values: Iterable[str],
    mailbox_exists: Callable[[str], bool]
) -> Optional[str]:
    """
    Pick the target mailbox from candidate values.

    Priority:
    - Candidates whose mailbox does not exist are ignored
    - The first unforced candidate is kept unless a forced one follows
    - The last forced candidate always wins

    Args:
        values: Raw mailbox values in encounter order
        mailbox_exists: Predicate telling whether a mailbox path exists

    Returns:
        Optional[str]: Mailbox path, or None when nothing qualifies
    """
    selected = None

    for value in values:
        candidate = MailboxCandidate.parse(value)

        if not candidate.path:
            logger.info(f"Ignoring empty mailbox candidate: {value!r}")
            continue

        if not mailbox_exists(candidate.path):
            logger.info(f"Mailbox does not exist, ignoring candidate: {candidate.path}")
            continue

        if candidate.forced:
            if selected is not None:
                logger.debug(f"Forced mailbox {candidate.path} overrides {selected}")
            selected = candidate.path
        elif selected is None:
            selected = candidate.path
        else:
            logger.debug(f"Keeping {selected}, ignoring later candidate {candidate.path}")

    return selected


def consolidate_tags(
    existing: Iterable[str],
    new_values: Iterable[str],
    waiting_tag: str
) -> TagDelta:
    """
    Add new tag values to an existing tag list.

    Matching is exact and case-sensitive. Empty values and values already
    present are skipped.

    Args:
        existing: Tags the message already carries (order preserved)
        new_values: Resolved tag values in encounter order
        waiting_tag: Tag never reported as the primary new tag

    Returns:
        TagDelta: Resulting tags, added tags and primary new tag
    """
    tags: List[str] = list(existing)
    delta = TagDelta(tags=tags)

    for value in new_values:
        if not value or value in tags:
            continue

        tags.append(value)
        delta.added.append(value)

        if value != waiting_tag:
            delta.primary_new_tag = value

    return delta
