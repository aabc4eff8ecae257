"""
Shared fixtures: a moto-backed single table plus small data factories
"""
import pytest
import boto3
from moto import mock_aws

from progress_service import dynamo, dynamo_achievements
from progress_service.config import get_settings
from progress_service.logic import progress_ledger

settings = get_settings()


@pytest.fixture(scope="function")
def aws_credentials(monkeypatch):
    """Mock AWS Credentials"""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", settings.AWS_REGION)


@pytest.fixture(scope="function")
def table(aws_credentials, monkeypatch):
    """Mock DynamoDB table with the PK/SK layout and a fresh client bound to it"""
    with mock_aws():
        dynamodb = boto3.resource('dynamodb', region_name=settings.AWS_REGION)
        created = dynamodb.create_table(
            TableName=settings.DYNAMODB_TABLE,
            KeySchema=[
                {'AttributeName': 'PK', 'KeyType': 'HASH'},
                {'AttributeName': 'SK', 'KeyType': 'RANGE'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'PK', 'AttributeType': 'S'},
                {'AttributeName': 'SK', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )
        monkeypatch.setattr(dynamo, 'db_client', dynamo.DynamoDBClient())
        yield created


@pytest.fixture
def make_child(table):
    def _make(child_id: str = "child-1", age_group: str = "6-8", **overrides):
        dynamo.create_child({'childId': child_id, 'name': child_id, 'ageGroup': age_group})
        if overrides:
            fields = ', '.join(f"#{k} = :{k}" for k in overrides)
            table.update_item(
                Key={'PK': dynamo.child_pk(child_id), 'SK': dynamo.PROFILE_SK},
                UpdateExpression=f"SET {fields}",
                ExpressionAttributeNames={f"#{k}": k for k in overrides},
                ExpressionAttributeValues={f":{k}": v for k, v in overrides.items()},
            )
        return dynamo.get_child(child_id)
    return _make


@pytest.fixture
def make_content(table):
    def _make(content_id: str, content_type: str = dynamo.GAME, **fields):
        return dynamo.put_content_item({
            'contentId': content_id,
            'contentType': content_type,
            'title': content_id,
            'ageGroups': ['6-8'],
            **fields,
        })
    return _make


@pytest.fixture
def make_progress(table):
    """Store a ProgressRecord directly, bypassing the event pipeline"""
    def _make(child_id: str, content_id: str, content_type: str = dynamo.GAME,
              attempt_key: str = "s1", **fields):
        record = progress_ledger.new_progress_record(child_id, content_type, content_id, attempt_key)
        record.update(fields)
        dynamo.create_progress_if_absent(record)
        return record
    return _make


@pytest.fixture
def make_definition(table):
    def _make(achievement_id: str, requirements, points_reward: int = 100, **fields):
        definition = {
            'achievementId': achievement_id,
            'name': achievement_id,
            'description': '',
            'category': 'games',
            'icon': None,
            'pointsReward': points_reward,
            'requirements': requirements,
            'isActive': True,
            'isSecret': False,
            'ageGroups': ['3-5', '6-8', '9-12'],
            'order': 0,
            **fields,
        }
        return dynamo_achievements.put_definition(definition)
    return _make
