"""
Verification Module - Detection review workflow and audit trail
"""

from .engine import VerificationEngine, VerificationHistoryDetail

__all__ = [
    "VerificationEngine",
    "VerificationHistoryDetail",
]
