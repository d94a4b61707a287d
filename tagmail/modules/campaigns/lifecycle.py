"""
Campaign Lifecycle
==================

State machine for a campaign record:

    Draft --schedule--> Scheduled --unschedule--> Draft
    Draft | Scheduled --begin_send--> Sending --complete_send--> Sent

Every transition is written through the store before the method returns.
The audience is resolved fresh at schedule time (to validate it) and
again at send time (to freeze it); recipients stay empty until Sent.

scheduled_at is kept on Sent campaigns as a record of when the send was
planned.

The ids resolved on entering Sending are stored with the campaign, so a
send interrupted between the two writes is finished by resume_send.
"""

import logging
import threading
import time
from contextlib import contextmanager

from tagmail.core.exceptions import CampaignValidationError, InvalidTransitionError
from tagmail.core.timestamps import parse_timestamp, to_iso, utcnow
from tagmail.modules.audience.targeting import (
    normalize_target, resolve, is_universal, describe_target, LOGIC_ANY, GROUPS_AND
)
from tagmail.modules.subscribers.models import active_subscribers
from .models import (
    STATUS_DRAFT, STATUS_SCHEDULED, STATUS_SENDING, STATUS_SENT, blank_campaign
)

logger = logging.getLogger(__name__)

CLONE_PREFIX = '[CLONE] '
TEST_PREFIX = '[TEST] '

EDITABLE_STATUSES = (STATUS_DRAFT, STATUS_SCHEDULED)


def _db_log(level, message, details=None):
    """Log to framework's persistent DB logger"""
    try:
        from tagmail.core.logging_service import db_log
        db_log(level, 'campaigns', message, details)
    except Exception:
        pass


class CampaignLifecycle:
    """
    Drives campaigns through their states against an injected store.

    Args:
        store: object offering get_database_contents, update_campaign
            (with expected_status), add_campaign, get_campaign and
            delete_campaign
        send_delay: seconds a delivery spends in Sending (simulated transport)
        test_tag_name: subscribers holding this tag receive test sends
        clock: callable returning the current aware datetime
        sleep: callable used for the send delay
    """

    def __init__(self, store, send_delay=0, test_tag_name='Test', clock=utcnow, sleep=time.sleep):
        self.store = store
        self.send_delay = send_delay
        self.test_tag_name = test_tag_name
        self.clock = clock
        self.sleep = sleep
        # ids of campaigns being delivered by this process
        self._delivering = set()
        self._in_flight_lock = threading.Lock()

    # ===================
    # AUDIENCE
    # ===================

    def audience_ids(self, database_id, target):
        """Ids of the tenant's active subscribers matching target.

        Used both for the live estimate and for the send-time snapshot.
        """
        contents = self.store.get_database_contents(database_id)
        return resolve(normalize_target(target), active_subscribers(contents['subscribers']))

    def estimate(self, database_id, target):
        """Live audience preview for the composer"""
        target = normalize_target(target)
        contents = self.store.get_database_contents(database_id)
        recipient_ids = resolve(target, active_subscribers(contents['subscribers']))
        tag_names = {t['id']: t['name'] for t in contents['tags']}
        return {
            'count': len(recipient_ids),
            'universal': is_universal(target),
            'description': describe_target(target, tag_names),
        }

    def _check_ready(self, campaign, recipient_ids, require_recipients=True):
        if not (campaign.get('subject') or '').strip():
            raise CampaignValidationError('subject_required', 'Subject is required.')
        if require_recipients and not recipient_ids:
            raise CampaignValidationError(
                'no_recipients',
                'This campaign has 0 recipients. Please adjust your audience filters.'
            )

    @staticmethod
    def _require(campaign, allowed, action):
        if campaign.get('status') not in allowed:
            raise InvalidTransitionError(campaign.get('id'), campaign.get('status'), action)

    # ===================
    # DRAFTS
    # ===================

    def save_draft(self, database_id, data):
        """
        Create a Draft, or update an existing Draft/Scheduled campaign's
        subject, body and target. Sending and Sent campaigns are frozen.
        """
        if data.get('id'):
            current = self.store.get_campaign(data['id'])
            self._require(current, EDITABLE_STATUSES, 'edit')
            updated = dict(
                current,
                subject=data.get('subject', current['subject']) or '',
                body=data.get('body', current['body']) or '',
                target=normalize_target(data['target'] if 'target' in data else current['target']),
                recipients=[],
                recipient_count=0,
            )
            self.store.update_campaign(updated, expected_status=current['status'])
            return updated

        campaign = blank_campaign()
        campaign.update(
            subject=data.get('subject') or '',
            body=data.get('body') or '',
            target=normalize_target(data.get('target')),
        )
        created = self.store.add_campaign(database_id, campaign)
        logger.info(f"Draft {created['id']} created")
        return created

    # ===================
    # TRANSITIONS
    # ===================

    def schedule(self, campaign, scheduled_at):
        """Draft (or already Scheduled) -> Scheduled at a future time"""
        self._require(campaign, EDITABLE_STATUSES, 'schedule')

        try:
            when = parse_timestamp(scheduled_at)
        except (TypeError, ValueError):
            when = None
        if when is None:
            raise CampaignValidationError('invalid_schedule', 'Please select both a date and a time.')
        if when <= self.clock():
            raise CampaignValidationError('schedule_in_past', 'Scheduled time must be in the future.')

        recipient_ids = self.audience_ids(campaign['database_id'], campaign.get('target'))
        self._check_ready(campaign, recipient_ids)

        updated = dict(
            campaign,
            status=STATUS_SCHEDULED,
            scheduled_at=to_iso(when),
            sent_at=None,
            recipients=[],
            recipient_count=0,
        )
        self.store.update_campaign(updated, expected_status=campaign['status'])
        logger.info(f"Campaign {campaign['id']} scheduled for {updated['scheduled_at']}")
        _db_log('info', 'Campaign scheduled', {'id': campaign['id'], 'scheduled_at': updated['scheduled_at']})
        return updated

    def unschedule(self, campaign):
        """Scheduled -> Draft; content and target are left as last edited"""
        self._require(campaign, (STATUS_SCHEDULED,), 'unschedule')
        updated = dict(campaign, status=STATUS_DRAFT, scheduled_at=None)
        self.store.update_campaign(updated, expected_status=STATUS_SCHEDULED)
        logger.info(f"Campaign {campaign['id']} unscheduled")
        return updated

    def begin_send(self, campaign, require_recipients=True, allowed=EDITABLE_STATUSES):
        """
        Draft | Scheduled -> Sending. Works from the stored record, not the
        caller's copy, so the audience comes from the current target.
        Returns (campaign, recipient_ids).

        The resolved ids are kept in pending_recipients so an interrupted
        send can be finished later; recipients stays empty until Sent.
        With require_recipients=False an empty audience is allowed and the
        send completes with zero recipients (scheduled sends).
        """
        current = self.store.get_campaign(campaign['id'])
        self._require(current, allowed, 'send')

        recipient_ids = self.audience_ids(current['database_id'], current.get('target'))
        self._check_ready(current, recipient_ids, require_recipients)

        sending = dict(
            current,
            status=STATUS_SENDING,
            sent_at=to_iso(self.clock()),
            recipient_count=len(recipient_ids),
            recipients=[],
            pending_recipients=recipient_ids,
        )
        # claim: only one caller can move this record out of its current status
        self.store.update_campaign(sending, expected_status=current['status'])
        logger.info(f"Campaign {current['id']} sending to {len(recipient_ids)} recipients")
        return sending, recipient_ids

    def complete_send(self, campaign, recipient_ids):
        """Sending -> Sent, freezing the ids resolved by begin_send"""
        self._require(campaign, (STATUS_SENDING,), 'complete')

        sent = dict(
            campaign,
            status=STATUS_SENT,
            recipients=list(recipient_ids),
            recipient_count=len(recipient_ids),
            pending_recipients=[],
        )
        self.store.update_campaign(sent, expected_status=STATUS_SENDING)
        logger.info(f"Campaign {campaign['id']} sent to {len(recipient_ids)} recipients")
        _db_log('info', 'Campaign sent', {'id': campaign['id'], 'recipients': len(recipient_ids)})
        return sent

    def deliver(self, campaign, on_transition=None, require_recipients=True, allowed=EDITABLE_STATUSES):
        """
        Full two-phase send used by both manual sends and the scheduler.
        on_transition(campaign) is called after each committed step.
        """
        with self._in_flight(campaign['id']):
            sending, recipient_ids = self.begin_send(campaign, require_recipients, allowed)
            if on_transition:
                on_transition(sending)

            if self.send_delay:
                self.sleep(self.send_delay)

            sent = self.complete_send(sending, recipient_ids)
        if on_transition:
            on_transition(sent)
        return sent

    def send_now(self, campaign_id, on_transition=None):
        """Manual 'Send Now' against the freshest stored copy"""
        return self.deliver(self.store.get_campaign(campaign_id), on_transition)

    def deliver_due(self, campaign_id, now, on_transition=None):
        """
        Scheduler send. Re-reads the campaign and returns None without
        touching it unless it is still Scheduled and due at `now`.
        """
        current = self.store.get_campaign(campaign_id)
        if current['status'] != STATUS_SCHEDULED:
            return None
        scheduled_at = parse_timestamp(current.get('scheduled_at'))
        if scheduled_at is None or scheduled_at > now:
            return None
        return self.deliver(current, on_transition, require_recipients=False, allowed=(STATUS_SCHEDULED,))

    def resume_send(self, campaign_id, on_transition=None):
        """
        Finish a campaign left in Sending by an interrupted delivery, using
        the ids stored when it entered Sending. Returns None when the
        campaign is still being delivered in this process or has moved on.
        """
        with self._in_flight(campaign_id) as claimed:
            if not claimed:
                return None
            current = self.store.get_campaign(campaign_id)
            if current['status'] != STATUS_SENDING:
                return None
            sent = self.complete_send(current, current.get('pending_recipients') or [])
        logger.warning(f"Resumed interrupted send of campaign {campaign_id}")
        _db_log('warning', 'Resumed interrupted send', {'id': campaign_id})
        if on_transition:
            on_transition(sent)
        return sent

    @contextmanager
    def _in_flight(self, campaign_id):
        """Mark a campaign as being delivered; yields False if it already was"""
        with self._in_flight_lock:
            if campaign_id in self._delivering:
                claimed = False
            else:
                self._delivering.add(campaign_id)
                claimed = True
        try:
            yield claimed
        finally:
            if claimed:
                with self._in_flight_lock:
                    self._delivering.discard(campaign_id)

    # ===================
    # SIDE BRANCHES
    # ===================

    def delete(self, campaign):
        if campaign.get('status') == STATUS_SENDING:
            raise InvalidTransitionError(campaign.get('id'), campaign.get('status'), 'delete')
        self.store.delete_campaign(campaign['id'])
        logger.info(f"Campaign {campaign['id']} deleted")
        _db_log('info', 'Campaign deleted', {'id': campaign['id']})

    def clone(self, campaign):
        """Copy any campaign into a fresh Draft; the original is untouched"""
        draft = {k: v for k, v in campaign.items() if k not in ('id', 'database_id')}
        draft.update(
            subject=f"{CLONE_PREFIX}{campaign.get('subject') or ''}",
            status=STATUS_DRAFT,
            sent_at=None,
            scheduled_at=None,
            recipient_count=0,
            recipients=[],
            pending_recipients=[],
        )
        created = self.store.add_campaign(campaign['database_id'], draft)
        logger.info(f"Campaign {campaign['id']} cloned into draft {created['id']}")
        return created

    def test_send(self, campaign):
        """
        Record a separate Sent campaign delivered to subscribers holding the
        test tag. The original campaign is not modified.
        """
        if not (campaign.get('subject') or '').strip():
            raise CampaignValidationError('subject_required', 'Subject is required.')

        contents = self.store.get_database_contents(campaign['database_id'])
        wanted = (self.test_tag_name or '').strip().lower()
        test_tag = next((t for t in contents['tags'] if t['name'].lower() == wanted), None)
        if test_tag is None:
            raise CampaignValidationError(
                'no_test_tag', f"Create a '{self.test_tag_name}' tag and add test subscribers to it first."
            )

        target = {
            'groups': [{'id': 'test-group', 'tags': [test_tag['id']], 'logic': LOGIC_ANY, 'at_least': 1}],
            'groups_logic': GROUPS_AND,
        }
        recipient_ids = resolve(target, active_subscribers(contents['subscribers']))
        if not recipient_ids:
            raise CampaignValidationError(
                'no_recipients', f"No subscribers hold the '{test_tag['name']}' tag."
            )

        record = {
            'subject': f"{TEST_PREFIX}{campaign['subject']}",
            'body': campaign.get('body') or '',
            'status': STATUS_SENT,
            'sent_at': to_iso(self.clock()),
            'scheduled_at': None,
            'recipient_count': len(recipient_ids),
            'recipients': recipient_ids,
            'target': target,
        }
        created = self.store.add_campaign(campaign['database_id'], record)
        logger.info(f"Test send of campaign {campaign.get('id')} recorded as {created['id']}")
        _db_log('info', 'Test send recorded', {'source': campaign.get('id'), 'id': created['id']})
        return created
