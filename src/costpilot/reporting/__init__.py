from .summary import MetricsAggregator, MetricsSummary
from .export import export_recommendations, EXPORT_FORMATS

__all__ = ['MetricsAggregator', 'MetricsSummary', 'export_recommendations', 'EXPORT_FORMATS']
