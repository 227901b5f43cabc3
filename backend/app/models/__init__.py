"""SQLAlchemy models for the guide application review service."""

from app.models.admin import AdminUser, AdminRole, AdminStatus, REVIEWER_ROLES
from app.models.application import GuideApplication, ApplicationStatus, TERMINAL_STATUSES
from app.models.approval import ApplicationApproval, AdminAction
from app.models.error_log import ErrorLog, ErrorSeverity

__all__ = [
    # Admins
    "AdminUser",
    "AdminRole",
    "AdminStatus",
    "REVIEWER_ROLES",
    # Guide applications
    "GuideApplication",
    "ApplicationStatus",
    "TERMINAL_STATUSES",
    "ApplicationApproval",
    "AdminAction",
    # Error Monitoring
    "ErrorLog",
    "ErrorSeverity",
]
