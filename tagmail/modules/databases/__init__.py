"""
Databases Module
================

Tenant ("company database") administration.

Features:
- Tenant CRUD with company profile and social links
- Active tenant pointer
- Copy or move subscribers between tenants
- Store maintenance: schema report, backup, restore, recreate, SQL dump
- Header-only CSV templates per table
"""

from flask import Blueprint

databases_bp = Blueprint(
    'databases',
    __name__,
    url_prefix='/admin/databases'
)

from . import routes
