"""
Achievements & Badges - DynamoDB Operations

Schema (same table as child profiles):

    PK: CATALOG#ACHIEVEMENT     SK: ACHIEVEMENT#{achievementId}   -> definition + timesEarned
    PK: CHILD#{childId}         SK: ACHIEVEMENT#{achievementId}   -> earned achievement
    PK: CHILD#{childId}         SK: BADGE#{name}                  -> ad hoc badge

Each earned achievement is its own item, written under attribute_not_exists, so a
grant happens at most once per child even if two evaluations race. The global
timesEarned counter is an atomic ADD on the definition item, committed in
the same transaction as the grant and the child's reward.
"""
from datetime import datetime
from typing import List, Dict, Any, Optional
from boto3.dynamodb.conditions import Key, Attr
from botocore.exceptions import ClientError
import logging

from progress_service import dynamo

logger = logging.getLogger(__name__)

ACHIEVEMENT_CATALOG_PK = "CATALOG#ACHIEVEMENT"


def achievement_sk(achievement_id: str) -> str:
    return f"ACHIEVEMENT#{achievement_id}"


def badge_sk(name: str) -> str:
    return f"BADGE#{name}"


# ============================================================================
# Definitions
# ============================================================================

def put_definition(definition: Dict[str, Any]) -> Dict[str, Any]:
    """
    Insert or replace an achievement definition.

    An existing timesEarned counter is preserved.
    """
    existing = get_definition(definition['achievementId'])
    item = {
        **definition,
        'PK': ACHIEVEMENT_CATALOG_PK,
        'SK': achievement_sk(definition['achievementId']),
        'timesEarned': existing['timesEarned'] if existing else definition.get('timesEarned', 0),
    }
    dynamo.db_client.table.put_item(Item=dynamo.dynamodb_dict(item))
    return item


def get_definition(achievement_id: str) -> Optional[Dict[str, Any]]:
    response = dynamo.db_client.table.get_item(
        Key={'PK': ACHIEVEMENT_CATALOG_PK, 'SK': achievement_sk(achievement_id)}
    )
    if 'Item' not in response:
        return None
    return dynamo.python_dict(response['Item'])


def list_definitions(active_only: bool = True) -> List[Dict[str, Any]]:
    """All achievement definitions, by default only the active ones"""
    kwargs = {'KeyConditionExpression': Key('PK').eq(ACHIEVEMENT_CATALOG_PK)}
    if active_only:
        kwargs['FilterExpression'] = Attr('isActive').eq(True)
    return dynamo.query_all(**kwargs)


# ============================================================================
# Earned achievements
# ============================================================================

def get_child_achievements(child_id: str) -> List[Dict[str, Any]]:
    """
    Achievements already earned by a child.

    Returns:
        List of {'achievementId', 'earnedAt'}
    """
    items = dynamo.query_all(
        KeyConditionExpression=(
            Key('PK').eq(dynamo.child_pk(child_id)) & Key('SK').begins_with('ACHIEVEMENT#')
        )
    )
    return [
        {'achievementId': item['achievementId'], 'earnedAt': item.get('earnedAt')}
        for item in items
    ]


def grant_achievement(child_id: str, achievement_id: str, points_reward: int) -> Optional[Dict[str, Any]]:
    """
    Record an achievement for a child exactly once, together with its reward.

    The earned item, the child's point totals and the definition's
    timesEarned counter are written in one transaction: either all three
    change or none does.

    Returns:
        The earned entry, or None if the child already had it
    """
    now = datetime.utcnow().isoformat()
    child_key = {'PK': dynamo.child_pk(child_id), 'SK': dynamo.PROFILE_SK}

    transact_items = [
        {
            'Put': {
                'Item': {
                    'PK': dynamo.child_pk(child_id),
                    'SK': achievement_sk(achievement_id),
                    'entityType': 'EARNED_ACHIEVEMENT',
                    'childId': child_id,
                    'achievementId': achievement_id,
                    'pointsReward': points_reward,
                    'earnedAt': now,
                },
                'ConditionExpression': 'attribute_not_exists(SK)',
            }
        },
        {
            'Update': {
                'Key': child_key,
                'UpdateExpression': 'ADD totalPoints :p, experiencePoints :p SET updatedAt = :now',
                'ConditionExpression': 'attribute_exists(PK)',
                'ExpressionAttributeValues': {':p': points_reward, ':now': now},
            }
        },
        {
            'Update': {
                'Key': {'PK': ACHIEVEMENT_CATALOG_PK, 'SK': achievement_sk(achievement_id)},
                'UpdateExpression': 'ADD timesEarned :one',
                'ExpressionAttributeValues': {':one': 1},
            }
        },
    ]

    try:
        dynamo.transact_write(transact_items)
    except ClientError as e:
        if dynamo.is_transaction_canceled(e) and has_achievement(child_id, achievement_id):
            logger.info(f"Achievement {achievement_id} already earned by {child_id}")
            return None
        logger.error(f"Error granting achievement {achievement_id} to {child_id}: {str(e)}")
        raise

    return {'achievementId': achievement_id, 'earnedAt': now}


def has_achievement(child_id: str, achievement_id: str) -> bool:
    response = dynamo.db_client.table.get_item(
        Key={'PK': dynamo.child_pk(child_id), 'SK': achievement_sk(achievement_id)},
        ConsistentRead=True
    )
    return 'Item' in response


# ============================================================================
# Badges
# ============================================================================

def get_child_badges(child_id: str) -> List[Dict[str, Any]]:
    items = dynamo.query_all(
        KeyConditionExpression=(
            Key('PK').eq(dynamo.child_pk(child_id)) & Key('SK').begins_with('BADGE#')
        )
    )
    return [
        {'name': item['name'], 'icon': item.get('icon'), 'earnedAt': item.get('earnedAt')}
        for item in items
    ]


def put_badge(child_id: str, name: str, icon: Optional[str]) -> Optional[Dict[str, Any]]:
    """Store a badge by name, None if the child already holds one with that name"""
    badge = {'name': name, 'icon': icon, 'earnedAt': datetime.utcnow().isoformat()}
    try:
        dynamo.db_client.table.put_item(
            Item={
                'PK': dynamo.child_pk(child_id),
                'SK': badge_sk(name),
                'entityType': 'BADGE',
                'childId': child_id,
                **badge,
            },
            ConditionExpression='attribute_not_exists(SK)'
        )
    except ClientError as e:
        if dynamo.is_conditional_failure(e):
            return None
        logger.error(f"Error awarding badge {name} to {child_id}: {str(e)}")
        raise
    return badge
