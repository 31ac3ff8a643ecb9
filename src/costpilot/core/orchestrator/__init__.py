from .scheduler import RecommendationScheduler, TickReport
from .service import AutopilotService

__all__ = ['RecommendationScheduler', 'TickReport', 'AutopilotService']
