# marketplace/models/__init__.py
# Central import surface for SQLModel table registration.
# Keeping these imports ensures init_db() sees all models and creates tables.

from .user import User, UserRole
from .user_hierarchy import HierarchyChangeLog, UserHierarchy
from .reference_code import CodeType, ReferenceCode
from .project import Project
from .agent_pricing import AgentPricingConfig
from .assignment_history import AssignmentType, ProjectAssignmentHistory
from .notification import Notification
from .financial_access_audit import FinancialAccessAudit

__all__ = [
    "User",
    "UserRole",
    "UserHierarchy",
    "HierarchyChangeLog",
    "CodeType",
    "ReferenceCode",
    "Project",
    "AgentPricingConfig",
    "AssignmentType",
    "ProjectAssignmentHistory",
    "Notification",
    "FinancialAccessAudit",
]
