"""Schema package exports."""
from .donation import (
    DonationCreate,
    DonationRead,
    OfflineSyncFailed,
    OfflineSyncProcessed,
    OfflineSyncResult,
    OfflineTransactionIn,
)
from .impact import CurrencyConversionRead, ImpactMetricsRead
from .project import MilestoneCreate, MilestoneRead, ProjectCreate, ProjectRead
from .validation import (
    ConsensusRead,
    GpsLocation,
    ValidationCreate,
    ValidationRead,
    ValidationSubmitResult,
)
from .validator import ValidatorCreate, ValidatorRead
from .webhook import WebhookAck

__all__ = [
    "ConsensusRead",
    "CurrencyConversionRead",
    "DonationCreate",
    "DonationRead",
    "GpsLocation",
    "ImpactMetricsRead",
    "MilestoneCreate",
    "MilestoneRead",
    "OfflineSyncFailed",
    "OfflineSyncProcessed",
    "OfflineSyncResult",
    "OfflineTransactionIn",
    "ProjectCreate",
    "ProjectRead",
    "ValidationCreate",
    "ValidationRead",
    "ValidationSubmitResult",
    "ValidatorCreate",
    "ValidatorRead",
    "WebhookAck",
]
