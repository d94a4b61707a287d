"""
Subscribers Module
==================

Subscriber management per tenant: CRUD, tag links, unsubscribe and
resubscribe, CSV import and export.
"""

from flask import Blueprint

subscribers_bp = Blueprint(
    'subscribers',
    __name__,
    url_prefix='/admin/subscribers'
)

from . import routes
