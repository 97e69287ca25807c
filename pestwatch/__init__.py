"""
Pestwatch: verification workflow and dashboard statistics for pest detections.
"""

__version__ = "1.0.0"
