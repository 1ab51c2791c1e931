"""Domain objects for TrailCrawl - explicit re-exports to satisfy linters."""
from .target import Target as Target
from .identity import Identity as Identity, ProxyTier as ProxyTier, HeaderProfile as HeaderProfile
from .outcome import Outcome as Outcome, OutcomeKind as OutcomeKind, FailureKind as FailureKind, FetchedContent as FetchedContent
from .attempt import Attempt as Attempt
from .artifact import Artifact as Artifact
from .audit_record import AuditRecord as AuditRecord
from .settings import AcquisitionSettings as AcquisitionSettings
from .acquisition_result import (
    AcquisitionSummary as AcquisitionSummary,
    DeliveryStatus as DeliveryStatus,
    TargetResult as TargetResult,
    TargetState as TargetState,
)

__all__ = [
    "Target",
    "Identity",
    "ProxyTier",
    "HeaderProfile",
    "Outcome",
    "OutcomeKind",
    "FailureKind",
    "FetchedContent",
    "Attempt",
    "Artifact",
    "AuditRecord",
    "AcquisitionSettings",
    "AcquisitionSummary",
    "DeliveryStatus",
    "TargetResult",
    "TargetState",
]
