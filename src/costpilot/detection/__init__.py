from .detector import WasteDetector
from .risk import RiskClassifier, RiskAssessment
from .factory import RecommendationFactory
from .signals import extract_signals

__all__ = [
    'WasteDetector', 'RiskClassifier', 'RiskAssessment',
    'RecommendationFactory', 'extract_signals'
]
