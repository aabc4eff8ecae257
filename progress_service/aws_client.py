"""
AWS Client for SNS notifications
"""
import boto3
import logging
from typing import Optional
from progress_service.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class AWSClient:
    """AWS services client wrapper"""
    
    def __init__(self):
        self.settings = settings
        self._sns_client = None
    
    @property
    def sns(self):
        """Lazy initialization of SNS client"""
        if self._sns_client is None:
            self._sns_client = boto3.client(
                'sns',
                region_name=self.settings.AWS_REGION,
                aws_access_key_id=self.settings.AWS_ACCESS_KEY_ID,
                aws_secret_access_key=self.settings.AWS_SECRET_ACCESS_KEY,
            )
        return self._sns_client
    
    def publish_notification(
        self,
        message: str,
        subject: Optional[str] = None,
        attributes: Optional[dict] = None
    ) -> Optional[str]:
        """
        Publish notification to SNS topic
        
        Args:
            message: Notification message
            subject: Message subject (optional)
            attributes: Message attributes (optional)
            
        Returns:
            Message ID if published successfully
        """
        if not self.settings.SNS_TOPIC_ARN:
            logger.debug("SNS_TOPIC_ARN not configured, skipping notification")
            return None
        
        try:
            kwargs = {
                'TopicArn': self.settings.SNS_TOPIC_ARN,
                'Message': message,
            }
            
            if subject:
                kwargs['Subject'] = subject
            
            if attributes:
                kwargs['MessageAttributes'] = {
                    k: {'DataType': 'String', 'StringValue': str(v)}
                    for k, v in attributes.items()
                }
            
            response = self.sns.publish(**kwargs)
            message_id = response['MessageId']
            
            logger.info(f"Published SNS notification: {message_id}")
            return message_id
            
        except Exception as e:
            logger.error(f"Error publishing notification: {str(e)}")
            return None
    
    def notify_level_up(self, child_id: str, new_level: int) -> Optional[str]:
        """Send level up notification"""
        return self.publish_notification(
            message=f"Congratulations! You reached level {new_level}",
            subject="New Level!",
            attributes={
                'child_id': child_id,
                'event_type': 'level_up',
                'new_level': str(new_level)
            }
        )
    
    def notify_achievement(self, child_id: str, achievement_id: str, name: str) -> Optional[str]:
        """Send achievement unlocked notification"""
        return self.publish_notification(
            message=f"You unlocked a new achievement: {name}!",
            subject="New Achievement!",
            attributes={
                'child_id': child_id,
                'event_type': 'achievement',
                'achievement_id': achievement_id
            }
        )


# Global instance
aws_client = AWSClient()
