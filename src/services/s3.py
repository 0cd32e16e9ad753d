"""
S3 operations utilities.

This module provides reusable functions for reading configuration documents
from Amazon S3 and writing generated text back to it.
"""

import logging

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

# Configure S3 client with timeouts to prevent infinite hangs
s3_config = Config(
    retries={
        'max_attempts': 1,  # 1 attempt total (no retries)
        'mode': 'standard'
    },
    connect_timeout=10,  # 10 seconds to establish connection
    read_timeout=30      # 30 seconds max for reading response
)

# Initialize S3 client at module level (thread-safe, reused across invocations)
s3_client = boto3.client('s3', config=s3_config)
logger.info("S3 client initialized with timeouts: connect=10s, read=30s, max_attempts=1")


def fetch_object(bucket: str, key: str) -> bytes:
    """
    Fetch an object's content from S3.

    Args:
        bucket: S3 bucket name
        key: S3 object key

    Returns:
        bytes: The object content

    Raises:
        ValueError: If the bucket or key does not exist
        ClientError: For other S3 errors

    Example:
        >>> raw = fetch_object("my-config-bucket", "contacts/contacts.json")
        >>> print(len(raw))
        2048
    """
    try:
        response = s3_client.get_object(Bucket=bucket, Key=key)
        return response['Body'].read()
    except ClientError as e:
        error_code = e.response.get('Error', {}).get('Code', '')
        if error_code == 'NoSuchKey':
            logger.error(f"S3 object not found: s3://{bucket}/{key}")
            raise ValueError(f"Object not found in S3: s3://{bucket}/{key}")
        elif error_code == 'NoSuchBucket':
            logger.error(f"S3 bucket not found: {bucket}")
            raise ValueError(f"S3 bucket not found: {bucket}")
        else:
            logger.error(f"Failed to fetch from S3 s3://{bucket}/{key}: {e}")
            raise


def upload_text(bucket: str, key: str, content: str, content_type: str = 'text/plain') -> None:
    """
    Upload text content to S3.

    Args:
        bucket: S3 bucket name
        key: S3 object key
        content: Content to upload as a string
        content_type: MIME type stored with the object

    Raises:
        ValueError: If parameters are invalid
        ClientError: If S3 operation fails
    """
    if not bucket:
        raise ValueError("S3 bucket name cannot be empty")
    if not key:
        raise ValueError("S3 object key cannot be empty")
    if content is None:
        raise ValueError("Content cannot be None")

    try:
        logger.info(
            f"Uploading to S3: bucket={bucket}, key={key}, "
            f"size={len(content)} bytes"
        )

        s3_client.put_object(
            Bucket=bucket,
            Key=key,
            Body=content.encode('utf-8'),
            ContentType=content_type
        )

        logger.info(f"Successfully uploaded to S3: bucket={bucket}, key={key}")

    except ClientError as e:
        error_code = e.response.get('Error', {}).get('Code', 'Unknown')
        error_message = e.response.get('Error', {}).get('Message', str(e))

        logger.error(
            f"Failed to upload to S3: "
            f"bucket={bucket}, key={key}, "
            f"error_code={error_code}, error_message={error_message}"
        )

        raise
