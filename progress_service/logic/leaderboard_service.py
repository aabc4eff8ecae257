"""
Leaderboard Aggregator

Each snapshot is keyed by (scope, period, periodStart, ageGroup) and holds the
whole rankings list. Updating one child is a read-modify-write of that list,
committed with a compare-and-swap on the snapshot version and retried when
another writer got there first.
"""
from typing import List, Dict, Any, Optional, Tuple, Iterable
from datetime import datetime, timedelta
import logging

from progress_service import dynamo
from progress_service import dynamo_achievements
from progress_service import dynamo_leaderboards
from progress_service.config import get_settings
from progress_service.exceptions import ConcurrentModificationError, StaleVersionError
from progress_service.logic import insights
from progress_service.schemas_leaderboards import (
    SCOPE_GLOBAL,
    SCOPE_AGE_GROUP,
    SCOPES,
    PERIOD_DAILY,
    PERIOD_WEEKLY,
    PERIOD_MONTHLY,
    PERIOD_ALL_TIME,
    PERIODS,
    TRACKED_PERIODS,
    ChildRankResponse,
    LeaderboardResponse,
    RankingEntry,
    RankPosition,
)

settings = get_settings()
logger = logging.getLogger(__name__)

ALL_TIME_START = datetime(2000, 1, 1)
ALL_TIME_END = datetime(2100, 1, 1)


# ============= PERIOD WINDOWS =============

def period_bounds(
    period: str,
    now: Optional[datetime] = None,
    week_start: Optional[int] = None
) -> Tuple[datetime, datetime]:
    """
    Start (inclusive) and end (exclusive) of the window containing `now`

    Weeks start on `week_start` (datetime.weekday numbering) at 00:00,
    months on the 1st.
    """
    if period not in PERIODS:
        raise ValueError(f"period must be one of {PERIODS}, got: {period}")

    now = now or datetime.utcnow()
    if week_start is None:
        week_start = settings.WEEK_START_DAY
    today = datetime(now.year, now.month, now.day)

    if period == PERIOD_DAILY:
        return today, today + timedelta(days=1)

    if period == PERIOD_WEEKLY:
        start = today - timedelta(days=(today.weekday() - week_start) % 7)
        return start, start + timedelta(days=7)

    if period == PERIOD_MONTHLY:
        start = today.replace(day=1)
        if start.month == 12:
            return start, start.replace(year=start.year + 1, month=1)
        return start, start.replace(month=start.month + 1)

    return ALL_TIME_START, ALL_TIME_END


def period_score(
    child: Dict[str, Any],
    progress_records: List[Dict[str, Any]],
    period: str,
    now: Optional[datetime] = None
) -> int:
    """
    Child's score for one window

    All-time is the lifetime totalPoints; other windows sum pointsEarned of
    the records created inside the window.
    """
    if period == PERIOD_ALL_TIME:
        return child.get('totalPoints', 0)

    start, end = period_bounds(period, now)
    start_iso, end_iso = start.isoformat(), end.isoformat()
    return sum(
        r.get('pointsEarned', 0)
        for r in progress_records
        if start_iso <= r.get('createdAt', '') < end_iso
    )


# ============= RANKING =============

def rerank(rankings: List[Dict[str, Any]], child_entry: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Upsert one child's entry and reassign ranks 1..N

    Entries are ordered by score descending, ties by childId ascending.
    Every entry keeps the rank it held before this pass as previousRank;
    entries new to the snapshot get previousRank None and rankChange 0.
    """
    child_id = child_entry['childId']
    existing = next((e for e in rankings if e.get('childId') == child_id), None)

    entries = [dict(e) for e in rankings if e.get('childId') != child_id]
    entries.append({**child_entry, 'rank': existing['rank'] if existing else None})

    entries.sort(key=lambda e: (-e['score'], e['childId']))

    for index, entry in enumerate(entries, start=1):
        previous = entry.get('rank')
        entry['previousRank'] = previous
        entry['rank'] = index
        entry['rankChange'] = previous - index if previous else 0

    return entries


def _empty_snapshot(scope: str, period: str, start: datetime, end: datetime, age_group: Optional[str]) -> Dict[str, Any]:
    return {
        'entityType': 'LEADERBOARD',
        'scope': scope,
        'period': period,
        'ageGroup': age_group if scope == SCOPE_AGE_GROUP else None,
        'periodStart': start.isoformat(),
        'periodEnd': end.isoformat(),
        'rankings': [],
        'lastUpdated': None,
    }


def upsert_entry(
    scope: str,
    period: str,
    child_entry: Dict[str, Any],
    age_group: Optional[str] = None,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Apply rerank to the stored snapshot under optimistic locking

    Raises:
        ConcurrentModificationError: Version kept moving for LEADERBOARD_MAX_RETRIES attempts
    """
    start, end = period_bounds(period, now)
    period_start = start.isoformat()
    age_group = age_group if scope == SCOPE_AGE_GROUP else None

    for attempt in range(1, settings.LEADERBOARD_MAX_RETRIES + 1):
        snapshot = dynamo_leaderboards.get_snapshot(scope, period, period_start, age_group)
        expected_version = snapshot['version'] if snapshot else None
        if snapshot is None:
            snapshot = _empty_snapshot(scope, period, start, end, age_group)

        snapshot['rankings'] = rerank(snapshot.get('rankings', []), child_entry)
        snapshot['lastUpdated'] = dynamo.utcnow_iso()

        try:
            return dynamo_leaderboards.write_snapshot(snapshot, expected_version)
        except StaleVersionError:
            logger.warning(
                f"Leaderboard {scope}/{period}/{age_group or 'ALL'} changed concurrently, "
                f"retrying ({attempt}/{settings.LEADERBOARD_MAX_RETRIES})"
            )

    key = dynamo_leaderboards.leaderboard_pk(scope, period, age_group)
    raise ConcurrentModificationError(f"{key}/{period_start}", settings.LEADERBOARD_MAX_RETRIES)


def update_leaderboards(
    child_id: str,
    periods: Iterable[str] = TRACKED_PERIODS,
    now: Optional[datetime] = None
) -> List[Dict[str, Any]]:
    """
    Recompute the child's entry in every (scope, period) snapshot

    Returns:
        The written snapshots
    """
    child = dynamo.require_child(child_id)
    progress_records = dynamo.query_child_progress(child_id)
    achievements_earned = len(dynamo_achievements.get_child_achievements(child_id))

    snapshots = []
    for period in periods:
        entry = {
            'childId': child_id,
            'score': period_score(child, progress_records, period, now),
            'totalPoints': child.get('totalPoints', 0),
            'gamesCompleted': len(child.get('completedGames', [])),
            'modulesCompleted': len(child.get('completedLessons', [])),
            'achievementsEarned': achievements_earned,
            'currentStreak': child.get('currentStreak', 0),
        }
        for scope in SCOPES:
            snapshots.append(upsert_entry(scope, period, entry, child['ageGroup'], now))

    logger.info(f"Updated {len(snapshots)} leaderboards for child {child_id}")
    return snapshots


def sync_leaderboards(periods: Iterable[str] = TRACKED_PERIODS) -> Dict[str, Any]:
    """
    Re-run update_leaderboards for every active child

    A failure for one child does not stop the pass; failed ids are reported.
    """
    periods = tuple(periods)
    children = dynamo.list_active_children()
    failed = []

    for child in children:
        try:
            update_leaderboards(child['childId'], periods)
        except Exception as e:
            logger.error(f"Leaderboard sync failed for child {child['childId']}: {str(e)}", exc_info=True)
            failed.append(child['childId'])

    logger.info(f"Leaderboard sync done: {len(children) - len(failed)}/{len(children)} children")
    return {'childrenProcessed': len(children) - len(failed), 'failed': failed}


# ============= QUERIES =============

def get_leaderboard(
    scope: str = SCOPE_GLOBAL,
    period: str = PERIOD_WEEKLY,
    age_group: Optional[str] = None,
    now: Optional[datetime] = None
) -> LeaderboardResponse:
    """
    Top LEADERBOARD_TOP_N of a snapshot; a missing snapshot is created empty
    """
    if scope not in SCOPES:
        raise ValueError(f"scope must be one of {SCOPES}, got: {scope}")
    if scope == SCOPE_AGE_GROUP and not age_group:
        raise ValueError("ageGroup is required for age-group leaderboards")

    start, end = period_bounds(period, now)
    age_group = age_group if scope == SCOPE_AGE_GROUP else None

    snapshot = dynamo_leaderboards.get_snapshot(scope, period, start.isoformat(), age_group)
    if snapshot is None:
        try:
            snapshot = dynamo_leaderboards.write_snapshot(
                _empty_snapshot(scope, period, start, end, age_group), None
            )
        except StaleVersionError:
            snapshot = dynamo_leaderboards.get_snapshot(scope, period, start.isoformat(), age_group)

    return LeaderboardResponse(
        scope=snapshot['scope'],
        period=snapshot['period'],
        ageGroup=snapshot.get('ageGroup'),
        periodStart=snapshot['periodStart'],
        periodEnd=snapshot['periodEnd'],
        lastUpdated=snapshot.get('lastUpdated'),
        rankings=[RankingEntry(**e) for e in snapshot.get('rankings', [])[:settings.LEADERBOARD_TOP_N]],
    )


def _position(snapshot: Optional[Dict[str, Any]], child_id: str) -> Optional[RankPosition]:
    if not snapshot:
        return None
    rankings = snapshot.get('rankings', [])
    entry = next((e for e in rankings if e['childId'] == child_id), None)
    if entry is None:
        return None
    return RankPosition(
        rank=entry['rank'],
        totalParticipants=len(rankings),
        score=entry['score'],
        rankChange=entry.get('rankChange', 0),
    )


def get_child_rank(child_id: str, period: str = PERIOD_WEEKLY, now: Optional[datetime] = None) -> ChildRankResponse:
    """Global and age-group position of a child for one period"""
    child = dynamo.require_child(child_id)
    start, _ = period_bounds(period, now)

    global_snapshot = dynamo_leaderboards.get_snapshot(SCOPE_GLOBAL, period, start.isoformat())
    age_snapshot = dynamo_leaderboards.get_snapshot(SCOPE_AGE_GROUP, period, start.isoformat(), child['ageGroup'])

    return ChildRankResponse(
        globalRank=_position(global_snapshot, child_id),
        ageGroupRank=_position(age_snapshot, child_id),
        percentile=insights.calculate_percentile(child_id),
        totalPoints=child.get('totalPoints', 0),
        level=child.get('level', 1),
    )
