"""Tabular export of recommendations"""

from pathlib import Path
from typing import List
import logging

import pandas as pd

from ..core.base import Recommendation
from ..core.exceptions import ValidationError

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("csv", "json")


def recommendations_frame(recommendations: List[Recommendation]) -> pd.DataFrame:
    rows = []
    for rec in recommendations:
        row = rec.to_dict()
        row.pop("recommended_action", None)
        rows.append(row)
    return pd.DataFrame(rows)


def export_recommendations(recommendations: List[Recommendation], path: Path,
                           format: str = "csv") -> Path:
    """Write recommendations to ``path`` as CSV or JSON records"""
    if format not in EXPORT_FORMATS:
        raise ValidationError(f"Unsupported export format '{format}', use one of {EXPORT_FORMATS}")

    frame = recommendations_frame(recommendations)
    path.parent.mkdir(parents=True, exist_ok=True)
    if format == "csv":
        frame.to_csv(path, index=False)
    else:
        frame.to_json(path, orient="records", indent=2)

    logger.info(f"Exported {len(frame)} recommendations to {path}")
    return path
