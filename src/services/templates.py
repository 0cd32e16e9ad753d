"""
Task text template management.

This module loads task text templates with the following priority:
1. S3 override (optional, for runtime updates without redeploy)
2. Local filesystem (templates/ directory packaged with Lambda)

Templates are cached in memory for warm Lambda invocations with TTL.
"""

import logging
import os
import time
from pathlib import Path
from typing import Dict, Tuple

from botocore.exceptions import ClientError

from services import s3 as s3_service

logger = logging.getLogger(__name__)

# Cache TTL in seconds (default: 5 minutes)
CACHE_TTL_SECONDS = int(os.environ.get('TEMPLATE_CACHE_TTL', '300'))

# Module-level cache: {cache_key: (template_content, timestamp)}
_template_cache: Dict[str, Tuple[str, float]] = {}

TEMPLATE_BUCKET = os.environ.get('TEMPLATE_BUCKET')
TEMPLATE_KEY_PREFIX = os.environ.get('TEMPLATE_KEY_PREFIX', 'templates/')

# src/services/templates.py -> src/templates/
TEMPLATES_DIR = Path(__file__).parent.parent / 'templates'


def _load_from_filesystem(template_name: str) -> str:
    """
    Load template from local filesystem.

    Raises:
        FileNotFoundError: If template file doesn't exist
    """
    template_path = TEMPLATES_DIR / template_name
    logger.info(f"Loading template from filesystem: {template_path}")

    with open(template_path, 'r', encoding='utf-8') as f:
        content = f.read()

    return content


def _load_from_s3(template_name: str) -> str:
    """
    Load template from S3 (optional override).

    Raises:
        ValueError: If TEMPLATE_BUCKET not set or template not found
    """
    if not TEMPLATE_BUCKET:
        raise ValueError("TEMPLATE_BUCKET environment variable not set")

    s3_key = f"{TEMPLATE_KEY_PREFIX}{template_name}"
    logger.info(f"Loading template from S3: s3://{TEMPLATE_BUCKET}/{s3_key}")

    return s3_service.fetch_object(TEMPLATE_BUCKET, s3_key).decode('utf-8')


def load_template(template_name: str, use_cache: bool = True) -> str:
    """
    Load template with caching and fallback.

    Priority: Cache -> S3 override -> Local filesystem

    Args:
        template_name: Template file name (e.g., "task_note.txt")
        use_cache: Use cached version if available (default: True)

    Returns:
        str: Template content

    Raises:
        ValueError: If template not found
    """
    cache_key = f"template:{template_name}"
    current_time = time.time()

    if use_cache and cache_key in _template_cache:
        cached_content, cached_time = _template_cache[cache_key]
        age_seconds = current_time - cached_time

        if age_seconds < CACHE_TTL_SECONDS:
            logger.debug(f"Using cached template: {template_name} (age: {int(age_seconds)}s)")
            return cached_content
        logger.info(f"Cache expired for template: {template_name}, reloading...")

    template_content = None

    if TEMPLATE_BUCKET:
        try:
            template_content = _load_from_s3(template_name)
            logger.info(f"Using S3 override for template: {template_name}")
        except (ClientError, ValueError) as e:
            logger.info(
                f"S3 override not available ({e.__class__.__name__}), "
                f"falling back to local filesystem"
            )

    if template_content is None:
        try:
            template_content = _load_from_filesystem(template_name)
        except FileNotFoundError:
            logger.error(
                f"Template not found: {template_name}. "
                f"Expected location: {TEMPLATES_DIR / template_name}"
            )
            raise ValueError(
                f"Template '{template_name}' not found in S3 or local filesystem"
            )

    _template_cache[cache_key] = (template_content, current_time)

    return template_content


def format_template(template: str, **variables) -> str:
    """
    Format template with variables.

    Values are inserted literally; braces inside them are not placeholders.

    Args:
        template: Template string with {variable} placeholders
        **variables: Values to substitute

    Returns:
        str: Formatted text

    Raises:
        ValueError: If a variable used by the template is missing

    Example:
        >>> format_template("{subject} [{tag}]", subject="Invoice", tag="billing")
        'Invoice [billing]'
    """
    try:
        return template.format(**variables)
    except KeyError as e:
        missing_var = str(e).strip("'")
        logger.error(f"Missing variable in template: {missing_var}")
        raise ValueError(f"Missing required variable in template: {missing_var}")


def clear_cache() -> None:
    """Clear the template cache."""
    _template_cache.clear()
    logger.info("Template cache cleared")
