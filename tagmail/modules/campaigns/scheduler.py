"""
Campaign Scheduler
==================

Background loop that sends Scheduled campaigns once their time has come.

One pass ("tick") runs immediately on start and then every ``interval``
seconds. A tick that fires while the previous one is still running is
dropped without touching the store. Due campaigns are sent one after
another; a failure on one campaign is logged and the rest still go out.
Each campaign is re-read right before it is sent, and campaigns left in
Sending by an earlier failed tick are finished first.
"""

import contextlib
import logging
import threading

from tagmail.core.timestamps import utcnow

logger = logging.getLogger(__name__)


def _db_log(level, message, details=None):
    """Log to framework's persistent DB logger"""
    try:
        from tagmail.core.logging_service import db_log
        db_log(level, 'scheduler', message, details)
    except Exception:
        pass


def _log_failure(error, details):
    """Persist a failure with its traceback"""
    try:
        from tagmail.core.logging_service import LoggingService
        LoggingService.log_exception('scheduler', error, details)
    except Exception:
        pass


class CampaignScheduler:
    """
    Args:
        store: provides get_due_campaigns(database_id, now) and
            get_sending_campaigns(database_id)
        lifecycle: CampaignLifecycle used to deliver or resume each campaign
        get_active_database_id: callable returning the active tenant id or None
        interval: seconds between ticks
        on_transition: optional callback run after each committed transition
        clock: callable returning the current aware datetime
        app_context: context manager factory entered by the background thread
    """

    def __init__(self, store, lifecycle, get_active_database_id, interval=30,
                 on_transition=None, clock=utcnow, app_context=None):
        self.store = store
        self.lifecycle = lifecycle
        self.get_active_database_id = get_active_database_id
        self.interval = interval
        self.on_transition = on_transition
        self.clock = clock
        self.app_context = app_context or contextlib.nullcontext

        self._guard = threading.Lock()
        self._stop_event = threading.Event()
        self._thread = None

    @property
    def running(self):
        return self._thread is not None and self._thread.is_alive()

    @property
    def busy(self):
        """True while a tick is in flight"""
        return self._guard.locked()

    def run_once(self):
        """
        One scheduler tick.

        Returns:
            number of campaigns sent, or None when the tick was dropped
            because another tick holds the guard
        """
        if not self._guard.acquire(blocking=False):
            logger.debug("Scheduler tick skipped: previous run still in progress")
            return None

        try:
            return self._process_due()
        except Exception as e:
            logger.error(f"Scheduler tick failed: {e}")
            _db_log('error', 'Scheduler tick failed', {'error': str(e)})
            return 0
        finally:
            self._guard.release()

    def _process_due(self):
        database_id = self.get_active_database_id()
        if database_id is None:
            return 0

        sent = self._resume_interrupted(database_id)

        now = self.clock()
        due = self.store.get_due_campaigns(database_id, now)
        if not due:
            return sent

        logger.info(f"Found {len(due)} due campaign(s) in database {database_id}")
        for campaign in due:
            # an earlier send in this tick may have slept; act on the stored record
            try:
                if self.lifecycle.deliver_due(campaign['id'], now, self.on_transition) is not None:
                    sent += 1
            except Exception as e:
                logger.error(f"Failed to send scheduled campaign {campaign.get('id')}: {e}")
                _log_failure(e, {'id': campaign.get('id'), 'database_id': database_id})
        return sent

    def _resume_interrupted(self, database_id):
        """Finish campaigns a failed tick left in Sending"""
        resumed = 0
        for campaign in self.store.get_sending_campaigns(database_id):
            try:
                if self.lifecycle.resume_send(campaign['id'], self.on_transition) is not None:
                    resumed += 1
            except Exception as e:
                logger.error(f"Failed to resume campaign {campaign.get('id')}: {e}")
                _log_failure(e, {'id': campaign.get('id'), 'database_id': database_id})
        return resumed

    def _loop(self):
        with self.app_context():
            self.run_once()
            while not self._stop_event.wait(self.interval):
                self.run_once()

    def start(self):
        """Start ticking on a daemon thread; the first tick runs immediately"""
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name='tagmail-scheduler', daemon=True)
        self._thread.start()
        logger.info(f"Campaign scheduler started (every {self.interval}s)")

    def stop(self, timeout=None):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Campaign scheduler stopped")
