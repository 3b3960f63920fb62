"""Domain modules package.

Importing every models module here registers all tables on ``Base.metadata``
before any mapper is configured.
"""

from tutormarket.modules.audit import models as audit_models  # noqa: F401
from tutormarket.modules.booking import models as booking_models  # noqa: F401
from tutormarket.modules.identity import models as identity_models  # noqa: F401
from tutormarket.modules.notifications import models as notifications_models  # noqa: F401
from tutormarket.modules.payments import models as payments_models  # noqa: F401
