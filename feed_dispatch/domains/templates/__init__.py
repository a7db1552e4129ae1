"""
Job Template Domain
Write-once registry of job templates.
"""
from .registry import JobTemplateRegistry

__all__ = ["JobTemplateRegistry"]
