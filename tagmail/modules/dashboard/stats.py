"""
Dashboard statistics for one tenant.
"""

from collections import Counter
from datetime import timedelta

from tagmail.core.timestamps import utcnow

from tagmail.modules.campaigns.models import STATUSES, STATUS_SENT, get_campaigns
from tagmail.modules.subscribers.models import active_subscribers, get_subscribers
from tagmail.modules.tags.models import get_tags

GROWTH_DAYS = 30


def subscriber_growth(subscribers, today=None, days=GROWTH_DAYS):
    """New subscribers per day for the last `days` days, oldest first"""
    today = today or utcnow().date()
    per_day = Counter((s.get('subscribed_at') or '')[:10] for s in subscribers)
    series = []
    for offset in range(days - 1, -1, -1):
        day = (today - timedelta(days=offset)).isoformat()
        series.append({'date': day, 'count': per_day.get(day, 0)})
    return series


def get_dashboard_stats(db, database_id, today=None):
    subscribers = get_subscribers(db, database_id)
    campaigns = get_campaigns(db, database_id)
    sent = [c for c in campaigns if c['status'] == STATUS_SENT]

    by_status = {status: 0 for status in STATUSES}
    for campaign in campaigns:
        by_status[campaign['status']] += 1

    total_recipients = sum(c['recipient_count'] for c in sent)
    return {
        'total_subscribers': len(subscribers),
        'active_subscribers': len(active_subscribers(subscribers)),
        'total_tags': len(get_tags(db, database_id)),
        'campaigns_by_status': by_status,
        'total_recipients': total_recipients,
        'avg_recipients': round(total_recipients / len(sent), 1) if sent else 0,
        'growth': subscriber_growth(subscribers, today),
    }
