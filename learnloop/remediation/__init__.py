"""
Misconception detection and remediation.

Components:
- RemediationOrchestrator: detect, explain, persist; None on any failure
- MisconceptionDetector / RemediationGenerator: collaborator protocols
- AIMisconceptionDetector / AIRemediationGenerator: AI gateway implementations
"""

from .collaborators import (
    AIMisconceptionDetector,
    AIRemediationGenerator,
    MisconceptionDetector,
    MisconceptionReport,
    MisconceptionRequest,
    RemediationContent,
    RemediationGenerator,
    RemediationRequest,
)
from .orchestrator import RemediationOrchestrator, remediation_range

__all__ = [
    "RemediationOrchestrator",
    "remediation_range",
    "MisconceptionDetector",
    "MisconceptionReport",
    "MisconceptionRequest",
    "RemediationGenerator",
    "RemediationContent",
    "RemediationRequest",
    "AIMisconceptionDetector",
    "AIRemediationGenerator",
]
