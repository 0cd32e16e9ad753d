"""
Tests for the trigger processing pipeline.
"""

import json
import pytest
from unittest.mock import Mock, patch
import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../src'))

from conftest import RecordingMailStore
from domain.models import MessageInfo, MutationState
from domain.trigger_processor import MutationError, TriggerProcessor
from integrations.imap_mailstore import MessageHandle
from services.contacts import Contact, ContactDirectory
from services.participants import SelectionMode
from services.settings import Settings


def make_message(sender='ann@example.com', mailbox='INBOX', uid='7', to=None):
    return MessageInfo(
        message_id='<m1@example.com>',
        mailbox=mailbox,
        uid=uid,
        from_address=sender,
        to_addresses=to or ['me@example.net'],
        subject='Quarterly report',
        body='Numbers attached',
    )


@pytest.fixture
def settings():
    return Settings(participant_mode=SelectionMode.SENDER_AND_RECIPIENTS)


class TestMutationSequencing:
    """Test move, relocate and tag ordering."""

    def test_move_then_relocate_then_tag(self, settings, directory, mail_store):
        """Test tags are written through a handle obtained after the move."""
        processor = TriggerProcessor(settings, directory, mail_store)

        result = processor.process_message(make_message())

        assert result.success is True
        assert mail_store.call_names == [
            'mailbox_exists', 'get_tags', 'move', 'relocate_by_message_id', 'set_tags'
        ]
        assert result.states == [
            MutationState.RESOLVED,
            MutationState.MOVED,
            MutationState.RELOCATED,
            MutationState.TAGGED,
            MutationState.DONE,
        ]
        message = mail_store.messages['<m1@example.com>']
        assert message['mailbox'] == 'Clients'
        assert message['tags'] == ['work', 'clients', 'vip']

    def test_relocate_targets_new_mailbox(self, settings, directory, mail_store):
        """Test relocation searches the target mailbox by Message-ID."""
        processor = TriggerProcessor(settings, directory, mail_store)

        processor.process_message(make_message())

        relocate = [c for c in mail_store.calls if c[0] == 'relocate_by_message_id'][0]
        set_tags = [c for c in mail_store.calls if c[0] == 'set_tags'][0]
        assert relocate == ('relocate_by_message_id', '<m1@example.com>', 'Clients')
        assert set_tags[1].mailbox == 'Clients'

    def test_move_without_tags_skips_relocate(self, settings, mail_store):
        """Test a move alone needs no relocation."""
        directory = ContactDirectory([
            Contact(name='Lee', emails=['lee@example.com'], note='@box: Archive'),
        ])
        processor = TriggerProcessor(settings, directory, mail_store)

        result = processor.process_message(make_message(sender='lee@example.com'))

        assert mail_store.call_names == ['mailbox_exists', 'move']
        assert result.states == [MutationState.RESOLVED, MutationState.MOVED, MutationState.DONE]

    def test_already_in_target_mailbox(self, settings, directory):
        """Test no move when the target is the current mailbox."""
        store = RecordingMailStore(
            mailboxes=['Clients'],
            messages={'<m1@example.com>': {'mailbox': 'Clients', 'uid': '3', 'tags': []}},
        )
        processor = TriggerProcessor(settings, directory, store)

        result = processor.process_message(make_message(mailbox='Clients', uid='3'))

        assert 'move' not in store.call_names
        assert 'relocate_by_message_id' not in store.call_names
        assert result.states == [MutationState.RESOLVED, MutationState.TAGGED, MutationState.DONE]
        assert store.messages['<m1@example.com>']['tags'] == ['clients', 'vip']

    def test_tags_only_use_original_handle(self, settings, mail_store):
        """Test tagging without a target mailbox uses the original handle."""
        directory = ContactDirectory([
            Contact(name='Eve', emails=['eve@example.com'], note='@tag: urgent'),
        ])
        processor = TriggerProcessor(settings, directory, mail_store)

        result = processor.process_message(make_message(sender='eve@example.com'))

        assert mail_store.call_names == ['get_tags', 'set_tags']
        assert mail_store.calls[-1] == (
            'set_tags', MessageHandle(mailbox='INBOX', uid='7'), ['work', 'urgent']
        )
        assert result.plan.target_mailbox is None

    def test_clean_tags_not_written(self, settings, mail_store):
        """Test no tag write when every tag is already present."""
        directory = ContactDirectory([
            Contact(name='Eve', emails=['eve@example.com'], note='@tag: work'),
        ])
        processor = TriggerProcessor(settings, directory, mail_store)

        result = processor.process_message(make_message(sender='eve@example.com'))

        assert mail_store.call_names == ['get_tags']
        assert result.states == [MutationState.RESOLVED, MutationState.DONE]

    def test_no_triggers_touches_nothing(self, settings, directory, mail_store):
        """Test a message without known participants is left alone."""
        processor = TriggerProcessor(settings, directory, mail_store)

        result = processor.process_message(make_message(sender='stranger@example.com'))

        assert result.success is True
        assert mail_store.calls == []
        assert result.plan.target_mailbox is None
        assert result.plan.tag_delta.dirty is False

    def test_message_without_uid_is_located(self, settings, directory, mail_store):
        """Test the handle is found by Message-ID when no uid is given."""
        processor = TriggerProcessor(settings, directory, mail_store)

        result = processor.process_message(make_message(uid=None))

        assert result.success is True
        assert mail_store.calls[1] == ('find_by_message_id', '<m1@example.com>', 'INBOX')


class TestResolutionAcrossParticipants:
    """Test aggregation feeding the resolvers."""

    def test_forced_mailbox_from_second_source(self, settings, directory, mail_store):
        """Test forced mailbox wins over an earlier participant's mailbox."""
        processor = TriggerProcessor(settings, directory, mail_store)

        result = processor.process_message(
            make_message(sender='ann@example.com', to=['Bob <Bob@Example.com>'])
        )

        assert result.plan.target_mailbox == 'Finance'
        assert result.plan.tag_delta.tags == ['work', 'clients', 'vip', 'billing']

    def test_sender_only_mode(self, directory, mail_store):
        """Test recipients are ignored in sender-only mode."""
        settings = Settings(participant_mode=SelectionMode.SENDER_ONLY)
        processor = TriggerProcessor(settings, directory, mail_store)

        result = processor.process_message(
            make_message(sender='ann@example.com', to=['bob@example.com'])
        )

        assert result.plan.target_mailbox == 'Clients'
        assert 'billing' not in result.plan.tag_delta.tags


class TestDryRun:
    """Test dry-run mode."""

    def test_dry_run_makes_no_mutations(self, directory, mail_store):
        """Test no move, relocate or tag write reaches the store."""
        processor = TriggerProcessor(Settings(dry_run=True), directory, mail_store)

        result = processor.process_message(make_message())

        assert result.success is True
        assert result.dry_run is True
        assert not {'move', 'relocate_by_message_id', 'set_tags'} & set(mail_store.call_names)
        assert result.states == [MutationState.RESOLVED, MutationState.DONE]
        assert mail_store.messages['<m1@example.com>'] == {
            'mailbox': 'INBOX', 'uid': '7', 'tags': ['work']
        }

    def test_dry_run_resolves_same_plan(self, directory, mail_store):
        """Test dry run reports the same mailbox and tags as a real run."""
        real_store = RecordingMailStore(
            mailboxes=list(mail_store.mailboxes),
            messages={'<m1@example.com>': {'mailbox': 'INBOX', 'uid': '7', 'tags': ['work']}},
        )
        message = make_message(to=['bob@example.com'])

        dry = TriggerProcessor(Settings(dry_run=True), directory, mail_store).process_message(message)
        real = TriggerProcessor(Settings(), directory, real_store).process_message(message)

        assert dry.plan.target_mailbox == real.plan.target_mailbox
        assert dry.plan.tag_delta.tags == real.plan.tag_delta.tags
        assert dry.plan.tag_delta.primary_new_tag == real.plan.tag_delta.primary_new_tag

    @patch('domain.trigger_processor.task_sink_service')
    def test_dry_run_submits_no_task(self, mock_sink, directory, mail_store):
        """Test the task sink is not used in dry run."""
        mock_sink.is_configured.return_value = True
        processor = TriggerProcessor(Settings(dry_run=True), directory, mail_store)

        result = processor.process_message(make_message())

        assert result.task_key is None
        mock_sink.submit_task.assert_not_called()


class TestMutationFailures:
    """Test failures at the mail store boundary."""

    def _store(self):
        store = Mock()
        store.mailbox_exists.return_value = True
        store.get_tags.return_value = []
        store.relocate_by_message_id.return_value = MessageHandle('Clients', '99')
        return store

    def test_move_failure(self, settings, directory):
        """Test a failed move fails the message without tagging."""
        store = self._store()
        store.move.side_effect = RuntimeError("NO [TRYCREATE]")
        processor = TriggerProcessor(settings, directory, store)

        result = processor.process_message(make_message())

        assert result.success is False
        assert result.states == [MutationState.RESOLVED]
        assert "'moved' failed" in result.error_message
        store.set_tags.assert_not_called()

    def test_tag_failure_after_move_is_partial(self, settings, directory):
        """Test moved-but-not-tagged is reported."""
        store = self._store()
        store.set_tags.side_effect = RuntimeError("STORE rejected")
        processor = TriggerProcessor(settings, directory, store)

        result = processor.process_message(make_message())

        assert result.success is False
        assert result.moved is True
        assert result.tagged is False
        assert result.states == [
            MutationState.RESOLVED, MutationState.MOVED, MutationState.RELOCATED
        ]
        assert "STORE rejected" in result.error_message

    def test_mutation_error_records_completed_steps(self):
        """Test MutationError exposes partial effects."""
        error = MutationError(
            MutationState.TAGGED,
            [MutationState.RESOLVED, MutationState.MOVED],
            RuntimeError("boom")
        )

        assert error.partial is True
        assert 'tagged' in str(error)
        assert 'boom' in str(error)

    def test_lookup_failure_fails_message(self, settings, directory):
        """Test a failure locating the message is reported, not raised."""
        store = self._store()
        store.find_by_message_id.side_effect = LookupError("not found")
        processor = TriggerProcessor(settings, directory, store)

        result = processor.process_message(make_message(uid=None))

        assert result.success is False
        assert "not found" in result.error_message


class TestTaskSubmission:
    """Test hand-off to the task sink."""

    @patch('domain.trigger_processor.task_sink_service')
    def test_task_submitted_with_primary_tag(self, mock_sink, settings, directory, mail_store):
        """Test the last new tag is used for the task text."""
        mock_sink.is_configured.return_value = True
        mock_sink.build_task_text.return_value = 'task text'
        mock_sink.submit_task.return_value = 'tasks/2025/01/01/m1.txt'
        processor = TriggerProcessor(settings, directory, mail_store)

        result = processor.process_message(make_message())

        assert result.task_key == 'tasks/2025/01/01/m1.txt'
        mock_sink.build_task_text.assert_called_once_with(
            subject='Quarterly report',
            tag='vip',
            body='Numbers attached',
            message_id='<m1@example.com>'
        )
        mock_sink.submit_task.assert_called_once_with('<m1@example.com>', 'task text')

    @patch('domain.trigger_processor.task_sink_service')
    def test_no_task_without_new_tag(self, mock_sink, settings, mail_store):
        """Test no task when no tag was added."""
        mock_sink.is_configured.return_value = True
        directory = ContactDirectory([
            Contact(name='Lee', emails=['lee@example.com'], note='@box: Archive'),
        ])
        processor = TriggerProcessor(settings, directory, mail_store)

        processor.process_message(make_message(sender='lee@example.com'))

        mock_sink.build_task_text.assert_not_called()

    @patch('domain.trigger_processor.task_sink_service')
    def test_template_error_does_not_fail_message(self, mock_sink, settings, directory, mail_store):
        """Test task text errors are logged only."""
        mock_sink.is_configured.return_value = True
        mock_sink.build_task_text.side_effect = ValueError("Template missing")
        processor = TriggerProcessor(settings, directory, mail_store)

        result = processor.process_message(make_message())

        assert result.success is True
        assert result.task_key is None


class TestProcessRecord:
    """Test SQS record entry point."""

    def test_process_record(self, settings, directory, mail_store):
        """Test record body is parsed and processed."""
        record = {'messageId': 'sqs-1', 'body': json.dumps({
            'messageId': '<m1@example.com>',
            'mailbox': 'INBOX',
            'uid': '7',
            'from': 'Ann <ANN@example.com>',
        })}
        processor = TriggerProcessor(settings, directory, mail_store)

        result = processor.process_record(record)

        assert result.success is True
        assert result.message_id == 'sqs-1'
        assert result.plan.target_mailbox == 'Clients'

    def test_invalid_record(self, settings, directory, mail_store):
        """Test unparseable record gives failed result."""
        processor = TriggerProcessor(settings, directory, mail_store)

        result = processor.process_record({'messageId': 'sqs-2', 'body': '{}'})

        assert result.success is False
        assert result.message_id == 'sqs-2'
        assert mail_store.calls == []


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
