"""
Tagmail Modules
===============

Flask blueprint modules for the Tagmail admin, plus the audience
targeting engine they share.
"""

__all__ = ['audience', 'campaigns', 'dashboard', 'databases', 'ops', 'subscribers', 'tags']
