"""
Dashboard Module
================

Admin session (login/logout) and per-tenant statistics.
Login is a placeholder: any POST to /admin/login opens a session.
"""

from flask import Blueprint

# Blueprint name is 'admin' so other modules can redirect to admin.login
dashboard_bp = Blueprint(
    'admin',
    __name__,
    url_prefix='/admin'
)

from . import routes
