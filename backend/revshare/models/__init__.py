# Import models here so Alembic can discover metadata.
from revshare.models.user import User  # noqa: F401

# Revenue split ledger
from revshare.models.platform_settings import PlatformSettings  # noqa: F401
from revshare.models.revenue_agreement import RevenueAgreement  # noqa: F401
from revshare.models.payout_request import PayoutRequest  # noqa: F401
from revshare.models.instructor_earning import InstructorEarning  # noqa: F401
from revshare.models.platform_earning import PlatformEarning  # noqa: F401
from revshare.models.payout_audit_log import PayoutAuditLog  # noqa: F401
