"""
Audience Module
===============

Provides:
- Tag-group predicate evaluation (ANY / ALL / NONE / AT_LEAST, AND / OR)
- Recipient resolution over a subscriber list
- Target validation and normalisation
"""

from .targeting import (
    matches, resolve, group_matches, is_universal, normalize_target,
    default_target, new_group, referenced_tag_ids, describe_target,
    TAG_LOGICS, GROUPS_LOGICS,
)

__all__ = [
    'matches', 'resolve', 'group_matches', 'is_universal', 'normalize_target',
    'default_target', 'new_group', 'referenced_tag_ids', 'describe_target',
    'TAG_LOGICS', 'GROUPS_LOGICS',
]
