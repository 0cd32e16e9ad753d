"""
Task sink for newly tagged messages.

Renders a short task text (subject, primary new tag, body) and stores it in
S3 where a downstream task manager picks it up. The sink is optional: when
TASK_BUCKET is not set nothing is submitted.
"""

import logging
import os
import re
from datetime import datetime, timezone
from typing import Optional

from services import s3 as s3_service
from services import templates as template_service

logger = logging.getLogger(__name__)

TASK_BUCKET = os.environ.get('TASK_BUCKET', '')
TASK_KEY_PREFIX = os.environ.get('TASK_KEY_PREFIX', 'tasks/')
TASK_TEMPLATE = 'task_note.txt'

MAX_BODY_CHARS = 2000


def is_configured() -> bool:
    """
    Check if the task sink is configured.

    Returns:
        True if TASK_BUCKET is set
    """
    return bool(TASK_BUCKET)


def _safe_key_part(value: str) -> str:
    """Reduce a Message-ID to characters safe for an S3 key."""
    cleaned = re.sub(r'[^A-Za-z0-9._-]', '_', value.strip('<>'))
    return cleaned[:200] or 'message'


def build_task_text(subject: str, tag: str, body: str, message_id: str = '') -> str:
    """
    Render the task text for one message.

    Args:
        subject: Message subject line
        tag: Primary new tag
        body: Message body (truncated)
        message_id: RFC 5322 Message-ID

    Returns:
        str: Rendered task text
    """
    template = template_service.load_template(TASK_TEMPLATE)

    if len(body) > MAX_BODY_CHARS:
        body = body[:MAX_BODY_CHARS] + '...'

    return template_service.format_template(
        template,
        subject=subject or '(no subject)',
        tag=tag,
        body=body,
        message_id=message_id,
    )


def submit_task(message_id: str, text: str) -> Optional[str]:
    """
    Store task text in S3.

    Args:
        message_id: RFC 5322 Message-ID (used to name the object)
        text: Task text

    Returns:
        Optional[str]: S3 key of the stored task, or None if the sink is
        not configured or the upload failed

    Note:
        Failures are logged and never raised; task creation is not part
        of message processing success.
    """
    if not is_configured():
        logger.info("Task sink not configured, skipping")
        return None

    date_path = datetime.now(timezone.utc).strftime('%Y/%m/%d')
    key = f"{TASK_KEY_PREFIX}{date_path}/{_safe_key_part(message_id)}.txt"

    try:
        s3_service.upload_text(TASK_BUCKET, key, text)
    except Exception as e:
        logger.error(f"Failed to submit task for {message_id}: {e}")
        return None

    logger.info(f"Task submitted: s3://{TASK_BUCKET}/{key}")
    return key
