from oppscan.models.pharmacy import Pharmacy, Patient  # noqa: F401
from oppscan.models.claim import Prescription  # noqa: F401
from oppscan.models.trigger import Trigger  # noqa: F401
from oppscan.models.coverage import CoverageRecord  # noqa: F401
from oppscan.models.opportunity import Opportunity, MergeReview  # noqa: F401
from oppscan.models.data_quality import DataQualityIssue  # noqa: F401
from oppscan.models.audit import AuditLog  # noqa: F401
from oppscan.models.scan_run import ScanRun  # noqa: F401
