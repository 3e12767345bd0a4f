# Models package — import all models here so Alembic can discover them.

from pagehaven.models.user import User  # noqa: F401
from pagehaven.models.site import (  # noqa: F401
    Site,
    SiteAccess,
    SiteInvite,
    SiteMember,
)
from pagehaven.models.deployment import Deployment  # noqa: F401
