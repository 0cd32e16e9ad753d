"""
Run configuration read from environment variables.

Settings are loaded once per invocation and never modified afterwards.
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from domain.models import TriggerKind
from services.participants import SelectionMode

logger = logging.getLogger(__name__)

DEFAULT_TAG_MARKER = '@tag: '
DEFAULT_BOX_MARKER = '@box: '
DEFAULT_WAITING_TAG = 'waiting'

TRUTHY = ('1', 'true', 'yes', 'on')
LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


@dataclass(frozen=True)
class Settings:
    """
    Immutable run configuration.

    Attributes:
        tag_marker: Marker introducing tag values
        box_marker: Marker introducing mailbox values
        project_marker: Marker for the reserved project kind (None = off)
        waiting_tag: Tag excluded from primary new tag classification
        participant_mode: Which message participants are scanned
        dry_run: Resolve and log only, never mutate
        log_level: Root logger level name
        imap_host: Mail store host
        imap_port: Mail store port
        imap_user: Mail store login
        imap_password: Mail store password
    """
    tag_marker: str = DEFAULT_TAG_MARKER
    box_marker: str = DEFAULT_BOX_MARKER
    project_marker: Optional[str] = None
    waiting_tag: str = DEFAULT_WAITING_TAG
    participant_mode: SelectionMode = SelectionMode.SENDER_AND_RECIPIENTS
    dry_run: bool = False
    log_level: str = 'INFO'
    imap_host: str = ''
    imap_port: int = 993
    imap_user: str = ''
    imap_password: str = ''

    def __post_init__(self):
        if not self.tag_marker or not self.box_marker:
            raise ValueError("TAG_MARKER and BOX_MARKER must not be empty")

        markers = [m for m in (self.tag_marker, self.box_marker, self.project_marker) if m]
        if len(set(markers)) != len(markers):
            raise ValueError(f"Trigger markers must be distinct, got: {markers}")

        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"Invalid LOG_LEVEL: {self.log_level}")

    @property
    def markers(self) -> Dict[TriggerKind, str]:
        """Marker per TriggerKind, in kind order; the project kind only when set."""
        markers = {
            TriggerKind.TAG: self.tag_marker,
            TriggerKind.MAILBOX: self.box_marker,
        }
        if self.project_marker:
            markers[TriggerKind.PROJECT] = self.project_marker
        return markers

    @property
    def imap_configured(self) -> bool:
        return bool(self.imap_host and self.imap_user)


def _parse_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got: {raw!r}")


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from environment variables.

    Args:
        env: Mapping to read from (default: os.environ)

    Returns:
        Settings: Validated configuration

    Raises:
        ValueError: If a variable holds an invalid value
    """
    if env is None:
        env = os.environ

    mode_name = env.get('PARTICIPANT_MODE', SelectionMode.SENDER_AND_RECIPIENTS.value)
    try:
        mode = SelectionMode(mode_name)
    except ValueError:
        valid = ', '.join(m.value for m in SelectionMode)
        raise ValueError(f"Invalid PARTICIPANT_MODE: {mode_name!r} (expected one of: {valid})")

    settings = Settings(
        tag_marker=env.get('TAG_MARKER', DEFAULT_TAG_MARKER),
        box_marker=env.get('BOX_MARKER', DEFAULT_BOX_MARKER),
        project_marker=env.get('PROJECT_MARKER') or None,
        waiting_tag=env.get('WAITING_TAG', DEFAULT_WAITING_TAG),
        participant_mode=mode,
        dry_run=env.get('DRY_RUN', 'false').strip().lower() in TRUTHY,
        log_level=env.get('LOG_LEVEL', 'INFO').strip().upper(),
        imap_host=env.get('IMAP_HOST', ''),
        imap_port=_parse_int(env, 'IMAP_PORT', 993),
        imap_user=env.get('IMAP_USER', ''),
        imap_password=env.get('IMAP_PASSWORD', ''),
    )

    logger.info(
        f"Settings loaded: mode={settings.participant_mode.value}, "
        f"dry_run={settings.dry_run}, markers={list(settings.markers.values())}"
    )
    return settings
