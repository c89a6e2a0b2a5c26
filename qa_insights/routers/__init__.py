"""
API routers package.
"""
from qa_insights.routers import reports, milestones

__all__ = ["reports", "milestones"]
