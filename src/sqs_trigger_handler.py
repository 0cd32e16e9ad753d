"""
AWS Lambda handler for applying contact triggers to messages from SQS.

Thin orchestration layer that delegates to TriggerProcessor.
Policy: Always delete messages (no retries). Errors logged to CloudWatch.
"""

import logging
from typing import Dict, Any, List

from domain.trigger_processor import TriggerProcessor
from integrations import imap_mailstore
from services import contacts as contact_service
from services.settings import load_settings

# Configure logging
logger = logging.getLogger()
logger.setLevel(logging.INFO)

# Add console handler for local testing (AWS Lambda provides handlers automatically)
if not logger.handlers:
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG)
    formatter = logging.Formatter('%(levelname)s - %(message)s')
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)


def _skip_batch(records: List[Dict[str, Any]], reason: str) -> Dict[str, Any]:
    """Log every record of a batch that could not be processed."""
    for record in records:
        logger.error(f"Skipped message {record.get('messageId', 'UNKNOWN')}: {reason}")
    return {"batchItemFailures": []}


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Apply contact triggers to the messages described by SQS records.

    Args:
        event: Lambda event with SQS records
        context: Lambda context

    Returns:
        Dict with batchItemFailures (always empty - no retries)
    """
    logger.info("=" * 70)
    logger.info("Contact Trigger Processor - Started")
    logger.info("=" * 70)

    records = event.get('Records', [])
    logger.info(f"Processing batch of {len(records)} message(s)")

    try:
        settings = load_settings()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return _skip_batch(records, "invalid configuration")

    logger.setLevel(settings.log_level)
    if settings.dry_run:
        logger.info("DRY RUN enabled: no message will be moved or tagged")

    if not settings.imap_configured:
        logger.error("IMAP_HOST and IMAP_USER must be set")
        return _skip_batch(records, "mail store not configured")

    try:
        directory = contact_service.load_directory()
    except contact_service.DirectoryLoadError as e:
        logger.error(f"Contact directory unavailable: {e}")
        return _skip_batch(records, "contact directory unavailable")

    try:
        store = imap_mailstore.connect(
            settings.imap_host,
            settings.imap_user,
            settings.imap_password,
            settings.imap_port
        )
    except imap_mailstore.MailStoreError as e:
        logger.error(f"Mail store unavailable: {e}")
        return _skip_batch(records, "mail store unavailable")

    results = []
    with store:
        processor = TriggerProcessor(settings, directory, store)

        for record in records:
            result = processor.process_record(record)
            results.append(result)

            if result.success:
                logger.info(f"✓ Successfully processed message {result.message_id}")
            else:
                logger.warning(
                    f"⚠ Processed message {result.message_id} with ERRORS: "
                    f"{result.error_message}"
                )

    # Log summary
    logger.info("=" * 70)
    logger.info(f"Batch processing complete: {len(results)} message(s)")
    success_count = sum(1 for r in results if r.success)
    logger.info(f"  Success: {success_count}")
    logger.info(f"  Errors: {len(results) - success_count}")
    logger.info(f"  Moved: {sum(1 for r in results if r.moved)}")
    logger.info(f"  Tagged: {sum(1 for r in results if r.tagged)}")
    logger.info("=" * 70)

    return {"batchItemFailures": []}
