"""
Campaigns Module
================

Provides:
- Draft autosave, live audience estimate and composer helpers
- Scheduling, unscheduling and two-phase sending (Sending -> Sent)
- Clone and test send
- Background scheduler for due campaigns
- Starter template library and AI content assist
"""

from flask import Blueprint

campaigns_bp = Blueprint(
    'campaigns',
    __name__,
    url_prefix='/admin/campaigns'
)

from . import routes
