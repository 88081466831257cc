# =============================================================================
# app/routers/ - API Route Definitions
# =============================================================================
# This package contains FastAPI routers organized by feature:
# - health.py: Health check endpoints
# - staging.py: Staging jobs, remixes and versions
# - team.py: Organizations, members and invitations
# - billing.py: Checkout, top-ups, portal and subscriptions
# - webhooks.py: Stripe and Replicate callbacks
# - jobs.py: QStash job delivery
# - notifications.py: In-app notifications
# - properties.py: Property CRUD
# - email.py: Email preferences and unsubscribe links
#
# Each router is mounted in main.py with a URL prefix.
# =============================================================================

from . import health
from . import staging
from . import team
from . import billing
from . import webhooks
from . import jobs
from . import notifications
from . import properties
from . import email

__all__ = [
    "health",
    "staging",
    "team",
    "billing",
    "webhooks",
    "jobs",
    "notifications",
    "properties",
    "email",
]
