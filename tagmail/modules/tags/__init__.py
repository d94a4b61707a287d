"""
Tags Module
===========

Tag management per tenant, including bulk relation editing (which
subscribers hold a tag, which draft campaigns target it) and usage stats.
"""

from flask import Blueprint

tags_bp = Blueprint(
    'tags',
    __name__,
    url_prefix='/admin/tags'
)

from . import routes
