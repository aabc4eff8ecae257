"""
Configuration settings for Progress Service
"""
from functools import lru_cache
from typing import Optional, List
from pydantic_settings import BaseSettings
from pydantic import ConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""
    
    # App
    APP_NAME: str = "Progress Service"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "local"
    LOG_LEVEL: str = "INFO"
    
    # AWS
    AWS_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: Optional[str] = None  # Only for LocalStack, ECS uses IAM roles
    AWS_SECRET_ACCESS_KEY: Optional[str] = None  # Only for LocalStack, ECS uses IAM roles
    
    # DynamoDB (single-table design: children, progress, catalog, leaderboards)
    DYNAMODB_ENDPOINT: Optional[str] = None  # None uses AWS, set for LocalStack
    DYNAMODB_TABLE: str = "play-learn-dev-progress"
    
    # SNS
    SNS_TOPIC_ARN: Optional[str] = None
    
    # Leaderboards
    WEEK_START_DAY: int = 6  # datetime.weekday(): 0 = Monday, 6 = Sunday
    LEADERBOARD_MAX_RETRIES: int = 5
    LEADERBOARD_TOP_N: int = 100
    
    # Progress records
    PROGRESS_MAX_RETRIES: int = 5
    
    # Recommendations
    SUGGESTION_LIMIT: int = 5
    
    # Content reward defaults (used when a catalog item does not define its own)
    DEFAULT_GAME_POINTS: int = 100
    DEFAULT_GAME_BONUS: int = 50
    DEFAULT_LESSON_POINTS: int = 50
    DEFAULT_MODULE_COMPLETION_POINTS: int = 200
    DEFAULT_PASSING_SCORE: int = 70
    
    # CORS
    CORS_ORIGINS: List[str] = ["*"]
    
    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=True
    )


@lru_cache()
def get_settings() -> Settings:
    """Returns cached settings instance (singleton)"""
    return Settings()
