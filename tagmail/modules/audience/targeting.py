"""
Audience Targeting
==================

Rule engine that decides which subscribers a campaign reaches.

A target is an ordered list of tag groups combined with AND/OR:

    {
        'groups': [
            {'id': 'group-1', 'tags': [1, 2], 'logic': 'ALL', 'at_least': 1},
            {'id': 'group-2', 'tags': [7], 'logic': 'NONE', 'at_least': 1},
        ],
        'groups_logic': 'AND',
    }

Each group evaluates the overlap between its tags and the subscriber's
tags. A group with no tags matches everyone, so a target whose groups are
all empty is the "all subscribers" audience.

Everything here is pure: no store access, no logging.
"""

import uuid

LOGIC_ANY = 'ANY'
LOGIC_ALL = 'ALL'
LOGIC_NONE = 'NONE'
LOGIC_AT_LEAST = 'AT_LEAST'
TAG_LOGICS = (LOGIC_ANY, LOGIC_ALL, LOGIC_NONE, LOGIC_AT_LEAST)

GROUPS_AND = 'AND'
GROUPS_OR = 'OR'
GROUPS_LOGICS = (GROUPS_AND, GROUPS_OR)


def _at_least(group):
    """Threshold for AT_LEAST groups; anything unusable falls back to 1"""
    raw = group.get('at_least', group.get('atLeast'))
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return 1
    return value if value >= 1 else 1


def _groups_logic(target):
    return target.get('groups_logic', target.get('groupsLogic', GROUPS_AND))


def group_matches(group, subscriber_tag_ids):
    """Evaluate a single tag group against a subscriber's tag ids"""
    group_tags = set(group.get('tags') or [])
    if not group_tags:
        return True

    overlap = len(group_tags & set(subscriber_tag_ids))
    logic = group.get('logic', LOGIC_ANY)

    if logic == LOGIC_ANY:
        return overlap > 0
    if logic == LOGIC_ALL:
        return overlap == len(group_tags)
    if logic == LOGIC_NONE:
        return overlap == 0
    if logic == LOGIC_AT_LEAST:
        return overlap >= _at_least(group)
    return False


def is_universal(target):
    """True when no group carries any tag, i.e. the target is everyone"""
    groups = (target or {}).get('groups') or []
    return all(not group.get('tags') for group in groups)


def matches(subscriber_tag_ids, target):
    """
    Decide whether a subscriber with the given tag ids is in the audience.

    Args:
        subscriber_tag_ids: iterable of tag ids held by the subscriber
        target: dict with 'groups' and 'groups_logic' (camelCase accepted)

    Returns:
        bool
    """
    if not target or is_universal(target):
        return True

    tag_ids = set(subscriber_tag_ids or [])
    results = [group_matches(group, tag_ids) for group in target.get('groups') or []]

    if _groups_logic(target) == GROUPS_OR:
        return any(results)
    return all(results)


def resolve(target, subscribers):
    """
    Ids of the subscribers matching target, in input order, without duplicates.

    subscribers are dicts carrying 'id' and 'tags' (a list of tag ids).
    """
    seen = set()
    recipient_ids = []
    for subscriber in subscribers:
        subscriber_id = subscriber['id']
        if subscriber_id in seen:
            continue
        if matches(subscriber.get('tags') or [], target):
            seen.add(subscriber_id)
            recipient_ids.append(subscriber_id)
    return recipient_ids


# ===================
# TARGET NORMALISATION
# ===================

def new_group(tags=None, logic=LOGIC_ANY, at_least=1):
    return {
        'id': f'group-{uuid.uuid4().hex[:8]}',
        'tags': list(tags or []),
        'logic': logic,
        'at_least': at_least,
    }


def default_target():
    """A single empty group: every subscriber"""
    return {'groups': [new_group()], 'groups_logic': GROUPS_AND}


def normalize_target(raw):
    """
    Validate a target coming from a request body or the store and return
    it in canonical form (snake_case keys, at least one group).

    Accepts camelCase keys (groupsLogic, atLeast) and the legacy
    single-group shape {'tags': [...], 'logic': 'ANY'}.

    Raises:
        ValueError: unknown logic values or non-integer tag ids
    """
    if not raw:
        return default_target()
    if not isinstance(raw, dict):
        raise ValueError('Target must be an object')

    if 'groups' not in raw and 'tags' in raw:
        raw = {'groups': [{'tags': raw.get('tags'), 'logic': raw.get('logic') or LOGIC_ANY}],
               'groups_logic': GROUPS_AND}

    groups_logic = _groups_logic(raw) or GROUPS_AND
    if groups_logic not in GROUPS_LOGICS:
        raise ValueError(f"Invalid groups logic '{groups_logic}', expected AND or OR")

    groups = []
    for index, group in enumerate(raw.get('groups') or []):
        if not isinstance(group, dict):
            raise ValueError(f'Group {index + 1} must be an object')

        logic = group.get('logic') or LOGIC_ANY
        if logic not in TAG_LOGICS:
            raise ValueError(f"Invalid logic '{logic}' in group {index + 1}")

        tags = []
        for tag_id in group.get('tags') or []:
            try:
                tag_id = int(tag_id)
            except (TypeError, ValueError):
                raise ValueError(f"Invalid tag id '{tag_id}' in group {index + 1}")
            if tag_id not in tags:
                tags.append(tag_id)

        groups.append({
            'id': str(group.get('id') or f'group-{index + 1}'),
            'tags': tags,
            'logic': logic,
            'at_least': _at_least(group),
        })

    if not groups:
        groups = [new_group()]

    return {'groups': groups, 'groups_logic': groups_logic}


def referenced_tag_ids(target):
    """Every tag id used anywhere in the target"""
    ids = set()
    for group in (target or {}).get('groups') or []:
        ids.update(group.get('tags') or [])
    return ids


def describe_target(target, tag_names=None):
    """Human readable summary, e.g. 'ALL of (News, VIP) AND NONE of (Test)'"""
    if is_universal(target):
        return 'All subscribers'

    tag_names = tag_names or {}
    parts = []
    for group in target.get('groups') or []:
        if not group.get('tags'):
            continue
        names = ', '.join(str(tag_names.get(t, t)) for t in group['tags'])
        logic = group.get('logic', LOGIC_ANY)
        if logic == LOGIC_AT_LEAST:
            label = f"AT LEAST {_at_least(group)} of"
        else:
            label = f"{logic} of"
        parts.append(f"{label} ({names})")
    return f" {_groups_logic(target)} ".join(parts)
