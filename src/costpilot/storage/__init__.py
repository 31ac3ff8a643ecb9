from .base import RecommendationStore
from .memory import InMemoryRecommendationStore, JsonFileRecommendationStore, create_store

__all__ = [
    'RecommendationStore', 'InMemoryRecommendationStore', 'JsonFileRecommendationStore',
    'create_store'
]
