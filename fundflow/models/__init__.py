"""ORM models package."""
from .audit import AuditLog
from .base import Base
from .donation import DonationStatus, DonationTransaction, PaymentMethod, TERMINAL_DONATION_STATES
from .fund_release import FundRelease, FundReleaseStatus
from .impact import DEFAULT_METRICS_KEY, ImpactEvent, ImpactMetrics
from .milestone import Milestone, MilestoneStatus, SETTLED_MILESTONE_STATES
from .project import Project, ProjectCategory
from .validation import Validation, ValidationStatus
from .validator import CommunityValidator, ValidatorStatus
from .webhook_event import PaymentWebhookEvent

__all__ = [
    "AuditLog",
    "Base",
    "CommunityValidator",
    "DEFAULT_METRICS_KEY",
    "DonationStatus",
    "DonationTransaction",
    "FundRelease",
    "FundReleaseStatus",
    "ImpactEvent",
    "ImpactMetrics",
    "Milestone",
    "MilestoneStatus",
    "PaymentMethod",
    "PaymentWebhookEvent",
    "Project",
    "ProjectCategory",
    "SETTLED_MILESTONE_STATES",
    "TERMINAL_DONATION_STATES",
    "Validation",
    "ValidationStatus",
    "ValidatorStatus",
]
