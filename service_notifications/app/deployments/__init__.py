"""
Deployment history for the notification relay.
"""

from .history import DeploymentEvent, DeploymentHistory

__all__ = ["DeploymentEvent", "DeploymentHistory"]
