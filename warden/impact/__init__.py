"""
WARDEN Impact

After-the-fact assessment of every auto-merge, and the revocation pass
that turns bad outcomes back into disabled autonomy rules.
"""

from warden.impact.assessor import (
    ImpactAssessor,
    has_high_churn,
    has_revert,
    has_severe_regression,
    make_merge_id,
)
from warden.impact.revocation import RevocationEngine

__all__ = [
    "ImpactAssessor",
    "RevocationEngine",
    "has_high_churn",
    "has_revert",
    "has_severe_regression",
    "make_merge_id",
]
