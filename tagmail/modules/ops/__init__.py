"""
Ops Module
==========

Health endpoint for uptime monitors and an admin view of the persistent
diagnostic log.

Usage:
    from tagmail.modules.ops import ops_health_bp, ops_admin_bp

    app.register_blueprint(ops_health_bp)  # Registers at /health
    app.register_blueprint(ops_admin_bp)   # Registers at /admin/ops
"""

from flask import Blueprint

# Public health endpoint (no auth, for uptime monitors)
ops_health_bp = Blueprint(
    'ops_health',
    __name__,
    url_prefix='/health'
)

# Admin log viewer (session auth)
ops_admin_bp = Blueprint(
    'ops_admin',
    __name__,
    url_prefix='/admin/ops'
)

from . import routes
