"""Custom exceptions for costpilot"""


class CostPilotError(Exception):
    """Base exception for all costpilot errors"""
    pass


class ConfigurationError(CostPilotError):
    """Raised when configuration is invalid"""
    pass


class ValidationError(CostPilotError):
    """Raised when input validation fails"""
    pass


class DataCollectionError(CostPilotError):
    """Raised when telemetry collection fails"""
    pass


class RecommendationBuildError(CostPilotError):
    """Raised when a recommendation cannot be built from a detection"""

    def __init__(self, resource_id: str, message: str):
        self.resource_id = resource_id
        super().__init__(f"[{resource_id}] {message}")


class RecommendationNotFoundError(CostPilotError):
    """Raised when a recommendation id is unknown"""

    def __init__(self, recommendation_id: str):
        self.recommendation_id = recommendation_id
        super().__init__(f"Recommendation {recommendation_id} not found")


class AuthorizationError(CostPilotError):
    """Raised when the acting user lacks the required role"""
    pass


class AuthenticationError(CostPilotError):
    """Raised when a bearer token cannot be verified"""
    pass


class ConflictError(CostPilotError):
    """Raised when an operation collides with the current recommendation state"""
    pass


class InvalidTransitionError(ConflictError):
    """Raised when a status transition is not allowed or the claim lost a race"""

    def __init__(self, recommendation_id: str, current: str, expected: str, target: str):
        self.recommendation_id = recommendation_id
        self.current = current
        self.expected = expected
        self.target = target
        super().__init__(
            f"Cannot move recommendation {recommendation_id} from {expected} to {target} "
            f"(current status: {current})"
        )


class DuplicateRecommendationError(ConflictError):
    """Raised when an active recommendation already exists for the resource"""

    def __init__(self, resource_id: str, resource_type: str, existing_id: str):
        self.resource_id = resource_id
        self.resource_type = resource_type
        self.existing_id = existing_id
        super().__init__(
            f"Active recommendation {existing_id} already exists for {resource_type}/{resource_id}"
        )


class ExecutionError(CostPilotError):
    """Base exception for optimization execution failures"""
    pass


class TransientExecutionError(ExecutionError):
    """Execution failed in a way that is worth retrying"""
    pass


class FatalExecutionError(ExecutionError):
    """Execution failed in a way that retrying will not fix"""
    pass


class ExecutionTimeoutError(TransientExecutionError):
    """Raised when an action adapter call exceeds its time budget"""
    pass
