"""
Docflow Approval System

Multi-stage approval workflows with reminders and escalation.
"""

from docflow.automation.approval.engine import ApprovalEngine, resolve_stage

__all__ = [
    "ApprovalEngine",
    "resolve_stage",
]
