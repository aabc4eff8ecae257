"""
Domain exceptions for the progress service.

Routers map the not-found family to 404 and everything else deriving from
ValueError to 400.
"""


class ProgressServiceError(Exception):
    """Base class for all service errors"""


class NotFoundError(ProgressServiceError, LookupError):
    """Referenced entity does not exist"""

    entity = "Entity"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity} {entity_id} not found")


class ChildNotFoundError(NotFoundError):
    entity = "Child"


class ContentNotFoundError(NotFoundError):
    entity = "Content"


class InvalidPointsError(ProgressServiceError, ValueError):
    """Point awards must be non-negative"""


class ConcurrentModificationError(ProgressServiceError):
    """Optimistic lock kept failing after all retries"""

    def __init__(self, key: str, attempts: int):
        self.key = key
        self.attempts = attempts
        super().__init__(f"Concurrent modification detected on {key} after {attempts} attempts")


class StaleVersionError(ProgressServiceError):
    """A versioned write lost the race against another writer"""

    def __init__(self, key: str, expected_version: int):
        self.key = key
        self.expected_version = expected_version
        super().__init__(f"Version mismatch on {key}: expected {expected_version}")
