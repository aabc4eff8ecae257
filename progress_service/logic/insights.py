"""
Read-only queries over children, progress and the content catalog
"""
from typing import List, Dict, Any
import logging

from progress_service import dynamo
from progress_service import dynamo_achievements
from progress_service.config import get_settings
from progress_service.logic import gamification
from progress_service.logic.progress_ledger import STATUS_COMPLETED, STATUS_IN_PROGRESS

settings = get_settings()
logger = logging.getLogger(__name__)

RECENT_PROGRESS_LIMIT = 10
DEFAULT_SUBJECT = "other"


def _completed_ids(progress_records: List[Dict[str, Any]], content_type: str) -> set:
    return {
        r['contentId'] for r in progress_records
        if r.get('contentType') == content_type and r.get('status') == STATUS_COMPLETED
    }


def _suggest(content_type: str, age_group: str, exclude: set) -> List[Dict[str, Any]]:
    candidates = [
        item for item in dynamo.list_content(content_type)
        if item.get('isActive') and item.get('isPublished')
        and age_group in item.get('ageGroups', [])
        and item['contentId'] not in exclude
    ]
    candidates.sort(key=lambda item: (-item.get('popularity', 0), item['contentId']))

    return [
        {k: v for k, v in item.items() if k not in ('PK', 'SK')}
        for item in candidates[:settings.SUGGESTION_LIMIT]
    ]


def get_suggested_activities(child_id: str) -> Dict[str, List[Dict[str, Any]]]:
    """
    Games and learning modules the child has not completed yet

    Only active, published content for the child's age group, most popular
    first, at most SUGGESTION_LIMIT of each.
    """
    child = dynamo.require_child(child_id)
    records = dynamo.query_child_progress(child_id)

    return {
        'games': _suggest(dynamo.GAME, child['ageGroup'], _completed_ids(records, dynamo.GAME)),
        'modules': _suggest(
            dynamo.LEARNING_MODULE, child['ageGroup'], _completed_ids(records, dynamo.LEARNING_MODULE)
        ),
    }


def calculate_percentile(child_id: str) -> int:
    """
    Share of active same-age-group peers with fewer lifetime points

    percentile = floor(peers_below / peers_total * 100); the child counts as
    a peer.
    """
    child = dynamo.require_child(child_id)
    peers = dynamo.list_active_children(child['ageGroup'])
    if not any(p['childId'] == child_id for p in peers):
        peers.append(child)

    points = child.get('totalPoints', 0)
    below = sum(1 for p in peers if p.get('totalPoints', 0) < points)

    return below * 100 // len(peers)


def _content_summary(records: List[Dict[str, Any]]) -> Dict[str, int]:
    total = len(records)
    return {
        'total': total,
        'completed': sum(1 for r in records if r.get('status') == STATUS_COMPLETED),
        'inProgress': sum(1 for r in records if r.get('status') == STATUS_IN_PROGRESS),
        'averageScore': round(sum(r.get('score', 0) for r in records) / total) if total else 0,
        'totalTimeSpent': round(sum(r.get('timeSpent', 0) for r in records) / 60),
    }


def get_child_progress(child_id: str) -> Dict[str, Any]:
    """
    Progress overview for a child

    Returns:
        {'stats': {'games', 'modules', 'overall'}, 'recentProgress': [...]}
        with times in minutes and the 10 most recently touched records
    """
    child = dynamo.require_child(child_id)
    records = dynamo.query_child_progress(child_id)

    games = [r for r in records if r.get('contentType') == dynamo.GAME]
    modules = [r for r in records if r.get('contentType') == dynamo.LEARNING_MODULE]

    recent = sorted(records, key=lambda r: r.get('lastAccessedAt') or '', reverse=True)

    return {
        'stats': {
            'games': _content_summary(games),
            'modules': _content_summary(modules),
            'overall': {
                'totalPoints': child.get('totalPoints', 0),
                'level': child.get('level', 1),
                'currentStreak': child.get('currentStreak', 0),
                'longestStreak': child.get('longestStreak', 0),
                'achievementsEarned': len(dynamo_achievements.get_child_achievements(child_id)),
                'badgesEarned': len(dynamo_achievements.get_child_badges(child_id)),
                'levelInfo': gamification.level_info(child),
            },
        },
        'recentProgress': [
            {k: v for k, v in r.items() if k not in ('PK', 'SK')}
            for r in recent[:RECENT_PROGRESS_LIMIT]
        ],
    }


def get_subject_progress(child_id: str) -> List[Dict[str, Any]]:
    """
    Progress grouped by the subject of each content item

    Games are grouped by their category, modules by their subject; items
    without one fall under "other". Time is reported in minutes.

    Returns:
        List of {subject, total, completed, inProgress, averageScore, timeSpent},
        highest averageScore first
    """
    dynamo.require_child(child_id)
    records = dynamo.query_child_progress(child_id)

    subjects = {}
    for content_type in dynamo.CONTENT_TYPES:
        for item in dynamo.list_content(content_type):
            subjects[(content_type, item['contentId'])] = item.get('subject') or DEFAULT_SUBJECT

    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for record in records:
        subject = subjects.get((record.get('contentType'), record.get('contentId')), DEFAULT_SUBJECT)
        grouped.setdefault(subject, []).append(record)

    summary = []
    for subject in sorted(grouped):
        stats = _content_summary(grouped[subject])
        summary.append({
            'subject': subject,
            'total': stats['total'],
            'completed': stats['completed'],
            'inProgress': stats['inProgress'],
            'averageScore': stats['averageScore'],
            'timeSpent': stats['totalTimeSpent'],
        })

    summary.sort(key=lambda s: s['averageScore'], reverse=True)
    return summary
