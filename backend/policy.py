"""
Risk level policy for fraud scores.

Maps a fusion score in [0, 100] onto a discrete tier:
- HIGH: score >= 70
- MEDIUM: 40 <= score < 70
- LOW: score < 40
"""
from typing import Dict, Optional

from schemas import RiskLevel


LEVEL_THRESHOLDS: Dict[str, float] = {
    'high': 70.0,
    'medium': 40.0,
}


def risk_level(score: float, thresholds: Optional[Dict[str, float]] = None) -> RiskLevel:
    """
    Discretize a fusion score.

    Args:
        score: Fusion score [0, 100]
        thresholds: Optional override of LEVEL_THRESHOLDS

    Returns:
        RiskLevel
    """
    if thresholds is None:
        thresholds = LEVEL_THRESHOLDS

    if score >= thresholds['high']:
        return RiskLevel.HIGH
    if score >= thresholds['medium']:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW
