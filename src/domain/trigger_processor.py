"""
Trigger processing pipeline - core business logic.

This module handles the end-to-end processing of one message:
1. Parse the message description from the SQS record
2. Select participants and aggregate their contact triggers
3. Resolve the target mailbox and consolidate tags into a MutationPlan
4. Apply the plan: move, relocate by Message-ID, write tags
5. Optionally hand a task text to the task sink

All errors are caught and returned as ProcessingResult with success=False.
No exceptions propagate out of the public methods.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from .models import (
    MessageInfo,
    MutationPlan,
    MutationState,
    ProcessingResult,
    TriggerKind,
    state_names,
)
from .resolution import consolidate_tags, resolve_mailbox
from .triggers import TriggerCollector, aggregate
from integrations.imap_mailstore import MessageHandle
from services import task_sink as task_sink_service
from services.participants import select_participants

logger = logging.getLogger(__name__)


class MutationError(Exception):
    """
    Raised when a mutation step fails.

    Attributes:
        state: State the failed step would have reached
        completed: States reached before the failure
        cause: Original exception
    """

    def __init__(self, state: MutationState, completed: List[MutationState], cause: Exception):
        self.state = state
        self.completed = list(completed)
        self.cause = cause
        super().__init__(
            f"Step '{state.value}' failed after {state_names(completed)}: {cause}"
        )

    @property
    def partial(self) -> bool:
        """True when the message was already changed before the failure."""
        return MutationState.MOVED in self.completed


class TriggerProcessor:
    """
    Resolves contact triggers for messages and applies them.

    Messages are processed one at a time. Every entity built for a message
    is discarded once its result is returned.
    """

    def __init__(self, settings, directory, mail_store):
        """
        Initialize trigger processor.

        Args:
            settings: Run configuration (markers, mode, dry run)
            directory: Contact directory with find_by_email()
            mail_store: Mailbox existence check and message mutations
        """
        self.settings = settings
        self.mail_store = mail_store
        self.collector = TriggerCollector(directory, settings.markers)

    def process_record(self, record: Dict[str, Any]) -> ProcessingResult:
        """
        Process a single SQS record describing one message.

        Args:
            record: SQS record dict

        Returns:
            ProcessingResult with success=True or success=False (errors logged)
        """
        record_id = record.get('messageId', 'UNKNOWN')
        logger.info(f"Processing SQS message: {record_id}")

        try:
            message = MessageInfo.from_record(record)
        except Exception as e:
            logger.error(f"Failed to parse {record_id}: {e}", exc_info=True)
            return ProcessingResult(
                success=False,
                message_id=record_id,
                dry_run=self.settings.dry_run,
                error_message=str(e)
            )

        return self.process_message(message, record_id=record_id)

    def process_message(self, message: MessageInfo, record_id: Optional[str] = None) -> ProcessingResult:
        """
        Resolve and apply triggers for one message.

        Args:
            message: Message description
            record_id: SQS message identifier (defaults to the Message-ID)

        Returns:
            ProcessingResult with the plan and the mutation states reached
        """
        result = ProcessingResult(
            success=False,
            message_id=record_id or message.message_id,
            dry_run=self.settings.dry_run
        )
        logger.info(f"Message {message.message_id} in {message.mailbox}: {message.subject}")

        try:
            plan, handle = self._resolve(message)
            result.plan = plan
            result.states.append(MutationState.RESOLVED)
            logger.info(f"Resolved plan for {message.message_id}: {plan.describe()}")

            self._apply(message, plan, handle, result.states)
            result.task_key = self._submit_task(message, plan)
            result.success = True

        except MutationError as e:
            if e.partial:
                logger.error(
                    f"PARTIAL MUTATION for {message.message_id}: moved to "
                    f"{result.plan.target_mailbox} but '{e.state.value}' failed: {e.cause}"
                )
            else:
                logger.error(f"Mutation failed for {message.message_id}: {e}")
            result.error_message = str(e)

        except Exception as e:
            logger.error(f"Failed to process {message.message_id}: {e}", exc_info=True)
            result.error_message = str(e)

        return result

    def _resolve(self, message: MessageInfo):
        """
        Build the mutation plan for a message.

        Returns:
            Tuple of MutationPlan and the message handle in its current
            mailbox (None when there is nothing to apply)
        """
        participants = select_participants(message, self.settings.participant_mode)
        triggers = aggregate(participants, self.collector)
        logger.info(f"Triggers for {message.message_id}: {triggers.to_dict()}")

        if triggers[TriggerKind.PROJECT]:
            logger.info(f"Project triggers are not acted on: {triggers[TriggerKind.PROJECT]}")

        target = resolve_mailbox(triggers[TriggerKind.MAILBOX], self.mail_store.mailbox_exists)
        tag_values = triggers[TriggerKind.TAG]

        if target is None and not tag_values:
            nothing = consolidate_tags([], [], self.settings.waiting_tag)
            return MutationPlan(message.mailbox, None, nothing), None

        handle = self._locate(message)
        existing = self.mail_store.get_tags(handle) if tag_values else []
        delta = consolidate_tags(existing, tag_values, self.settings.waiting_tag)

        return MutationPlan(message.mailbox, target, delta), handle

    def _locate(self, message: MessageInfo) -> MessageHandle:
        if message.uid:
            return MessageHandle(mailbox=message.mailbox, uid=message.uid)
        return self.mail_store.find_by_message_id(message.message_id, message.mailbox)

    def _step(self, state: MutationState, states: List[MutationState], action: Callable[[], Any]) -> Any:
        """Run one mutation step and record the state it reaches."""
        try:
            value = action()
        except Exception as e:
            raise MutationError(state, states, e) from e
        states.append(state)
        return value

    def _apply(
        self,
        message: MessageInfo,
        plan: MutationPlan,
        handle: Optional[MessageHandle],
        states: List[MutationState]
    ) -> None:
        """
        Apply a plan: move, then relocate, then tag.

        A move invalidates the handle, so tags are written through a handle
        re-obtained by Message-ID in the target mailbox.
        """
        if self.settings.dry_run:
            logger.info(
                f"DRY RUN: {message.message_id} not changed "
                f"(would move={plan.needs_move}, would tag={plan.needs_tagging})"
            )
            states.append(MutationState.DONE)
            return

        target = plan.target_mailbox

        if target is not None:
            if plan.needs_move:
                self._step(MutationState.MOVED, states, lambda: self.mail_store.move(handle, target))
                logger.info(f"Moved {message.message_id}: {plan.source_mailbox} -> {target}")

                if plan.needs_tagging:
                    handle = self._step(
                        MutationState.RELOCATED,
                        states,
                        lambda: self.mail_store.relocate_by_message_id(message.message_id, target)
                    )
            else:
                logger.info(f"Message {message.message_id} already in {target}, not moving")

        if plan.needs_tagging:
            self._step(
                MutationState.TAGGED,
                states,
                lambda: self.mail_store.set_tags(handle, plan.tag_delta.tags)
            )
            logger.info(f"Tagged {message.message_id}: added {plan.tag_delta.added}")

        states.append(MutationState.DONE)

    def _submit_task(self, message: MessageInfo, plan: MutationPlan) -> Optional[str]:
        """Hand the task text to the task sink when a primary new tag exists."""
        tag = plan.tag_delta.primary_new_tag
        if tag is None or self.settings.dry_run or not task_sink_service.is_configured():
            return None

        try:
            text = task_sink_service.build_task_text(
                subject=message.subject,
                tag=tag,
                body=message.body,
                message_id=message.message_id
            )
        except ValueError as e:
            logger.error(f"Failed to build task text for {message.message_id}: {e}")
            return None

        return task_sink_service.submit_task(message.message_id, text)
