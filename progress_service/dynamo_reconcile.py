"""
Reconciliation queue - DynamoDB Operations

When achievement evaluation or leaderboard recomputation fails after the
primary write was committed, the child is parked here:

    PK: RECONCILE   SK: CHILD#{childId}

One item per child; repeated failures merge their reasons and bump `attempts`.
"""
from typing import List, Dict, Any
from boto3.dynamodb.conditions import Key
import logging

from progress_service import dynamo

logger = logging.getLogger(__name__)

RECONCILE_PK = "RECONCILE"


def enqueue(child_id: str, reasons: List[str]) -> None:
    """Mark a child's derived state as stale"""
    now = dynamo.utcnow_iso()
    dynamo.db_client.table.update_item(
        Key={'PK': RECONCILE_PK, 'SK': dynamo.child_pk(child_id)},
        UpdateExpression=(
            'SET childId = :child, lastFailedAt = :now, '
            'firstFailedAt = if_not_exists(firstFailedAt, :now) '
            'ADD reasons :reasons, attempts :one'
        ),
        ExpressionAttributeValues={
            ':child': child_id,
            ':now': now,
            ':reasons': set(reasons),
            ':one': 1,
        }
    )
    logger.warning(f"Child {child_id} queued for reconciliation: {reasons}")


def list_pending() -> List[Dict[str, Any]]:
    items = dynamo.query_all(KeyConditionExpression=Key('PK').eq(RECONCILE_PK))
    for item in items:
        item['reasons'] = sorted(item.get('reasons', set()))
    return items


def remove(child_id: str) -> None:
    dynamo.db_client.table.delete_item(Key={'PK': RECONCILE_PK, 'SK': dynamo.child_pk(child_id)})
