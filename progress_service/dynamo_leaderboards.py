"""
Leaderboard snapshots - DynamoDB Operations

    PK: LEADERBOARD#{scope}#{period}#{ageGroup or ALL}
    SK: PERIOD#{periodStart}

A snapshot is one document holding the whole rankings list. Concurrent
recomputations for different children target the same document, so every
write is a compare-and-swap on the `version` attribute.
"""
from typing import Dict, Any, Optional
from botocore.exceptions import ClientError
import logging

from progress_service import dynamo
from progress_service.exceptions import StaleVersionError

logger = logging.getLogger(__name__)


def leaderboard_pk(scope: str, period: str, age_group: Optional[str] = None) -> str:
    return f"LEADERBOARD#{scope}#{period}#{age_group or 'ALL'}"


def period_sk(period_start: str) -> str:
    return f"PERIOD#{period_start}"


def get_snapshot(
    scope: str,
    period: str,
    period_start: str,
    age_group: Optional[str] = None
) -> Optional[Dict[str, Any]]:
    """Load a snapshot by its identity key, None if it was never written"""
    try:
        response = dynamo.db_client.table.get_item(
            Key={'PK': leaderboard_pk(scope, period, age_group), 'SK': period_sk(period_start)},
            ConsistentRead=True
        )
    except ClientError as e:
        logger.error(f"Error getting leaderboard {scope}/{period}/{age_group}: {str(e)}")
        raise

    if 'Item' not in response:
        return None
    return dynamo.python_dict(response['Item'])


def write_snapshot(snapshot: Dict[str, Any], expected_version: Optional[int]) -> Dict[str, Any]:
    """
    Replace a snapshot with optimistic locking.

    Args:
        snapshot: Full snapshot document (scope, period, periodStart, ageGroup, rankings, ...)
        expected_version: Version read before modification, None when creating

    Returns:
        Stored snapshot with its new version

    Raises:
        StaleVersionError: Another writer committed first
    """
    pk = leaderboard_pk(snapshot['scope'], snapshot['period'], snapshot.get('ageGroup'))
    sk = period_sk(snapshot['periodStart'])
    new_version = (expected_version or 0) + 1

    item = {**snapshot, 'PK': pk, 'SK': sk, 'version': new_version}

    kwargs = {'Item': dynamo.dynamodb_dict(item)}
    if expected_version is None:
        kwargs['ConditionExpression'] = 'attribute_not_exists(PK)'
    else:
        kwargs['ConditionExpression'] = '#version = :expected_version'
        kwargs['ExpressionAttributeNames'] = {'#version': 'version'}
        kwargs['ExpressionAttributeValues'] = {':expected_version': expected_version}

    try:
        dynamo.db_client.table.put_item(**kwargs)
    except ClientError as e:
        if dynamo.is_conditional_failure(e):
            logger.warning(f"Version mismatch on {pk}/{sk}: expected {expected_version}")
            raise StaleVersionError(f"{pk}/{sk}", expected_version or 0)
        logger.error(f"Error writing leaderboard {pk}/{sk}: {str(e)}")
        raise

    return item
