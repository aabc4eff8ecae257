"""
DynamoDB operations for progress-service

Single-table design. Every entity shares one table and is addressed by PK/SK:

- CHILD#{childId}        / PROFILE                     -> child profile + gamification stats
- CHILD#{childId}        / PROGRESS#{progressId}       -> one ProgressRecord per attempt
- CATALOG#{contentType}  / CONTENT#{contentId}         -> games and learning modules

Achievements, leaderboards and the reconciliation queue live in their own
modules (dynamo_achievements, dynamo_leaderboards, dynamo_reconcile) on the
same table.
"""
import boto3
from boto3.dynamodb.conditions import Key, Attr
from botocore.exceptions import ClientError
from typing import Optional, Dict, Any, List, Tuple
from datetime import datetime
from decimal import Decimal
import logging

from progress_service.config import get_settings
from progress_service.exceptions import ChildNotFoundError, StaleVersionError

settings = get_settings()
logger = logging.getLogger(__name__)

GAME = "game"
LEARNING_MODULE = "learning-module"
CONTENT_TYPES = (GAME, LEARNING_MODULE)

# Learning modules hold a single record per child
MODULE_ATTEMPT_KEY = "enrollment"

PROFILE_SK = "PROFILE"


class DynamoDBClient:
    """DynamoDB client with lazy initialization"""

    def __init__(self):
        self.settings = settings
        self._dynamodb = None
        self._table = None

    @property
    def dynamodb(self):
        """Lazy initialization of DynamoDB resource"""
        if self._dynamodb is None:
            kwargs = {
                'region_name': self.settings.AWS_REGION,
            }

            # Only use endpoint_url for LocalStack
            if self.settings.DYNAMODB_ENDPOINT:
                kwargs['endpoint_url'] = self.settings.DYNAMODB_ENDPOINT

            # Explicit credentials only in LocalStack mode, ECS uses the task IAM role
            if self.settings.DYNAMODB_ENDPOINT and self.settings.AWS_ACCESS_KEY_ID:
                kwargs['aws_access_key_id'] = self.settings.AWS_ACCESS_KEY_ID
                kwargs['aws_secret_access_key'] = self.settings.AWS_SECRET_ACCESS_KEY
                logger.info("Using explicit AWS credentials (LocalStack mode)")
            else:
                logger.info("Using IAM role credentials (AWS/ECS mode)")

            self._dynamodb = boto3.resource('dynamodb', **kwargs)
        return self._dynamodb

    @property
    def table(self):
        if self._table is None:
            self._table = self.dynamodb.Table(self.settings.DYNAMODB_TABLE)
        return self._table


# Global instance
db_client = DynamoDBClient()


# ============= KEY BUILDERS =============

def child_pk(child_id: str) -> str:
    return f"CHILD#{child_id}"


def catalog_pk(content_type: str) -> str:
    return f"CATALOG#{content_type}"


def content_sk(content_id: str) -> str:
    return f"CONTENT#{content_id}"


def build_progress_id(content_type: str, content_id: str, attempt_key: Optional[str] = None) -> str:
    """
    Build the stable identifier of a ProgressRecord.

    Games get one record per play session (attempt key); learning modules
    always use MODULE_ATTEMPT_KEY.
    """
    if content_type == LEARNING_MODULE or not attempt_key:
        attempt_key = MODULE_ATTEMPT_KEY
    return f"{content_type}:{content_id}:{attempt_key}"


def progress_sk(progress_id: str) -> str:
    return f"PROGRESS#{progress_id}"


# ============= HELPER FUNCTIONS =============

def utcnow_iso() -> str:
    return datetime.utcnow().isoformat()


def is_conditional_failure(error: ClientError) -> bool:
    return error.response.get('Error', {}).get('Code') == 'ConditionalCheckFailedException'


def dynamodb_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """Convert Python dict to DynamoDB compatible dict (handles Decimal)"""
    return {k: dynamodb_value(v) for k, v in data.items()}


def dynamodb_value(value: Any) -> Any:
    """Convert Python value to DynamoDB compatible value"""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    elif isinstance(value, dict):
        return {k: dynamodb_value(v) for k, v in value.items()}
    elif isinstance(value, (list, tuple)):
        return [dynamodb_value(item) for item in value]
    return value


def python_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """Convert DynamoDB dict to Python dict (handles Decimal)"""
    return {k: python_value(v) for k, v in data.items()}


def python_value(value: Any) -> Any:
    """Convert DynamoDB value to Python value"""
    if isinstance(value, Decimal):
        return int(value) if value % 1 == 0 else float(value)
    elif isinstance(value, dict):
        return {k: python_value(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [python_value(item) for item in value]
    elif isinstance(value, set):
        return {python_value(item) for item in value}
    return value


def query_all(**kwargs) -> List[Dict[str, Any]]:
    """Run a query and follow LastEvaluatedKey until exhausted"""
    items = []
    while True:
        response = db_client.table.query(**kwargs)
        items.extend(python_dict(item) for item in response.get('Items', []))
        last_key = response.get('LastEvaluatedKey')
        if not last_key:
            return items
        kwargs['ExclusiveStartKey'] = last_key


def transact_write(transact_items: List[Dict[str, Any]]) -> None:
    """
    Commit several writes atomically

    Raises:
        ClientError: TransactionCanceledException when any condition fails;
            nothing is written in that case
    """
    for entry in transact_items:
        for operation in entry.values():
            operation.setdefault('TableName', db_client.table.name)

    db_client.dynamodb.meta.client.transact_write_items(TransactItems=transact_items)


def is_transaction_canceled(error: ClientError) -> bool:
    return error.response.get('Error', {}).get('Code') == 'TransactionCanceledException'


def scan_all(**kwargs) -> List[Dict[str, Any]]:
    """Scan the table following LastEvaluatedKey until exhausted"""
    items = []
    while True:
        response = db_client.table.scan(**kwargs)
        items.extend(python_dict(item) for item in response.get('Items', []))
        last_key = response.get('LastEvaluatedKey')
        if not last_key:
            return items
        kwargs['ExclusiveStartKey'] = last_key


# ============= CHILD OPERATIONS =============

def create_child(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Create a child profile with zeroed gamification stats

    Args:
        payload: childId, name, username, ageGroup (+ optional isActive)

    Returns:
        Stored child data

    Raises:
        ValueError: If the child already exists
    """
    now = utcnow_iso()
    child_id = payload['childId']

    child = {
        'PK': child_pk(child_id),
        'SK': PROFILE_SK,
        'entityType': 'CHILD',
        'childId': child_id,
        'name': payload.get('name', ''),
        'username': payload.get('username') or child_id,
        'ageGroup': payload['ageGroup'],
        'totalPoints': 0,
        'experiencePoints': 0,
        'level': 1,
        'currentStreak': 0,
        'longestStreak': 0,
        'lastActivityDate': None,
        'completedGames': [],
        'completedLessons': [],
        'isActive': payload.get('isActive', True),
        'createdAt': now,
        'updatedAt': now,
    }

    try:
        db_client.table.put_item(
            Item=dynamodb_dict(child),
            ConditionExpression='attribute_not_exists(PK)'
        )
    except ClientError as e:
        if is_conditional_failure(e):
            raise ValueError(f"Child {child_id} already exists")
        logger.error(f"Error creating child {child_id}: {str(e)}")
        raise

    logger.info(f"Created child {child_id} (age group {child['ageGroup']})")
    return child


def get_child(child_id: str) -> Optional[Dict[str, Any]]:
    """Get child profile by ID, None if missing"""
    try:
        response = db_client.table.get_item(Key={'PK': child_pk(child_id), 'SK': PROFILE_SK})
    except ClientError as e:
        logger.error(f"Error getting child {child_id}: {str(e)}")
        raise

    if 'Item' not in response:
        return None
    return python_dict(response['Item'])


def require_child(child_id: str) -> Dict[str, Any]:
    """Get child profile or raise ChildNotFoundError"""
    child = get_child(child_id)
    if child is None:
        raise ChildNotFoundError(child_id)
    return child


def list_active_children(age_group: Optional[str] = None) -> List[Dict[str, Any]]:
    """All active children, optionally restricted to one age group"""
    filter_expr = Attr('entityType').eq('CHILD') & Attr('isActive').eq(True)
    if age_group:
        filter_expr = filter_expr & Attr('ageGroup').eq(age_group)
    return scan_all(FilterExpression=filter_expr)


def add_child_points(child_id: str, points: int) -> Dict[str, Any]:
    """
    Atomically add points to both lifetime total and XP.

    Returns:
        Updated child attributes
    """
    try:
        response = db_client.table.update_item(
            Key={'PK': child_pk(child_id), 'SK': PROFILE_SK},
            UpdateExpression='ADD totalPoints :p, experiencePoints :p SET updatedAt = :now',
            ConditionExpression='attribute_exists(PK)',
            ExpressionAttributeValues={':p': points, ':now': utcnow_iso()},
            ReturnValues='ALL_NEW'
        )
    except ClientError as e:
        if is_conditional_failure(e):
            raise ChildNotFoundError(child_id)
        logger.error(f"Error adding points to child {child_id}: {str(e)}")
        raise
    return python_dict(response['Attributes'])


def raise_child_level(child_id: str, level: int) -> bool:
    """
    Set child level only if it is an increase.

    Returns:
        True if the stored level changed
    """
    try:
        db_client.table.update_item(
            Key={'PK': child_pk(child_id), 'SK': PROFILE_SK},
            UpdateExpression='SET #level = :level',
            ConditionExpression='attribute_exists(PK) AND #level < :level',
            ExpressionAttributeNames={'#level': 'level'},
            ExpressionAttributeValues={':level': level}
        )
        return True
    except ClientError as e:
        if is_conditional_failure(e):
            return False
        logger.error(f"Error raising level for child {child_id}: {str(e)}")
        raise


def save_child_streak(child_id: str, current_streak: int, longest_streak: int, last_activity_date: str) -> None:
    """Persist streak counters computed by gamification.update_streak"""
    db_client.table.update_item(
        Key={'PK': child_pk(child_id), 'SK': PROFILE_SK},
        UpdateExpression=(
            'SET currentStreak = :current, longestStreak = :longest, '
            'lastActivityDate = :last, updatedAt = :now'
        ),
        ExpressionAttributeValues={
            ':current': current_streak,
            ':longest': longest_streak,
            ':last': last_activity_date,
            ':now': utcnow_iso(),
        }
    )


def append_child_completion(child_id: str, log_name: str, entry: Dict[str, Any]) -> None:
    """
    Append an entry to one of the child's completion logs.

    Args:
        log_name: 'completedGames' or 'completedLessons'
    """
    if log_name not in ('completedGames', 'completedLessons'):
        raise ValueError(f"Unknown completion log: {log_name}")

    db_client.table.update_item(
        Key={'PK': child_pk(child_id), 'SK': PROFILE_SK},
        UpdateExpression='SET #log = list_append(if_not_exists(#log, :empty), :entry), updatedAt = :now',
        ExpressionAttributeNames={'#log': log_name},
        ExpressionAttributeValues={
            ':empty': [],
            ':entry': [dynamodb_dict(entry)],
            ':now': utcnow_iso(),
        }
    )


# ============= PROGRESS OPERATIONS =============

def get_progress(child_id: str, progress_id: str) -> Optional[Dict[str, Any]]:
    """Get a single ProgressRecord"""
    try:
        response = db_client.table.get_item(
            Key={'PK': child_pk(child_id), 'SK': progress_sk(progress_id)}
        )
    except ClientError as e:
        logger.error(f"Error getting progress {progress_id} for child {child_id}: {str(e)}")
        raise

    if 'Item' not in response:
        return None
    return python_dict(response['Item'])


def create_progress_if_absent(record: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
    """
    Insert a new ProgressRecord unless one already exists for the same key.

    Returns:
        Tuple of (stored_record, created)
    """
    item = {
        'PK': child_pk(record['childId']),
        'SK': progress_sk(record['progressId']),
        **record,
    }
    try:
        db_client.table.put_item(
            Item=dynamodb_dict(item),
            ConditionExpression='attribute_not_exists(PK)'
        )
        return item, True
    except ClientError as e:
        if not is_conditional_failure(e):
            logger.error(f"Error creating progress {record['progressId']}: {str(e)}")
            raise

    existing = get_progress(record['childId'], record['progressId'])
    return existing, False


def save_progress(record: Dict[str, Any]) -> Dict[str, Any]:
    """
    Replace a ProgressRecord with its updated state under optimistic locking

    The write only succeeds if the stored version is still the one the
    record was read at; the saved record carries the next version.

    Raises:
        StaleVersionError: Another report saved the record first
    """
    expected_version = record.get('version', 0)
    item = {
        **record,
        'PK': child_pk(record['childId']),
        'SK': progress_sk(record['progressId']),
        'version': expected_version + 1,
        'updatedAt': utcnow_iso(),
    }
    try:
        db_client.table.put_item(
            Item=dynamodb_dict(item),
            ConditionExpression='attribute_not_exists(#version) OR #version = :expected_version',
            ExpressionAttributeNames={'#version': 'version'},
            ExpressionAttributeValues={':expected_version': expected_version}
        )
    except ClientError as e:
        if is_conditional_failure(e):
            logger.warning(f"Progress {record['progressId']} changed since version {expected_version}")
            raise StaleVersionError(f"{record['childId']}/{record['progressId']}", expected_version)
        logger.error(f"Error saving progress {record['progressId']}: {str(e)}")
        raise

    record['version'] = item['version']
    record['updatedAt'] = item['updatedAt']
    return record


def query_child_progress(child_id: str, content_type: Optional[str] = None) -> List[Dict[str, Any]]:
    """All ProgressRecords for a child, optionally for one content type"""
    prefix = f"PROGRESS#{content_type}:" if content_type else "PROGRESS#"
    return query_all(
        KeyConditionExpression=Key('PK').eq(child_pk(child_id)) & Key('SK').begins_with(prefix)
    )


# ============= CONTENT CATALOG OPERATIONS =============

def put_content_item(item: Dict[str, Any]) -> Dict[str, Any]:
    """Insert or replace a game / learning module in the catalog"""
    content_type = item['contentType']
    if content_type not in CONTENT_TYPES:
        raise ValueError(f"Invalid content type: {content_type}")

    stored = {
        'isActive': True,
        'isPublished': True,
        'popularity': 0,
        'ageGroups': [],
        **item,
        'PK': catalog_pk(content_type),
        'SK': content_sk(item['contentId']),
    }
    db_client.table.put_item(Item=dynamodb_dict(stored))
    return stored


def get_content_item(content_type: str, content_id: str) -> Optional[Dict[str, Any]]:
    response = db_client.table.get_item(
        Key={'PK': catalog_pk(content_type), 'SK': content_sk(content_id)}
    )
    if 'Item' not in response:
        return None
    return python_dict(response['Item'])


def list_content(content_type: str) -> List[Dict[str, Any]]:
    return query_all(KeyConditionExpression=Key('PK').eq(catalog_pk(content_type)))
