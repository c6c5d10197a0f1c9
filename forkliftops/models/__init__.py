from forkliftops.models.autocount_export import AutoCountExport
from forkliftops.models.event_outbox import EventOutbox
from forkliftops.models.forklift import Forklift
from forkliftops.models.hourmeter import HourmeterAmendmentRecord, HourmeterReading
from forkliftops.models.job import Job
from forkliftops.models.job_audit_log import JobAuditLog
from forkliftops.models.notification import Notification

__all__ = [
    "AutoCountExport",
    "EventOutbox",
    "Forklift",
    "HourmeterAmendmentRecord",
    "HourmeterReading",
    "Job",
    "JobAuditLog",
    "Notification",
]
