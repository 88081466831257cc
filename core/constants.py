# =============================================================================
# core/constants.py - Business Constants
# =============================================================================
# Credit costs, remix quotas, image limits, room types, furniture styles,
# subscription plans and top-up packages.
#
# Stripe price IDs are read from settings so each environment can point at
# its own Stripe account.
# =============================================================================

from dataclasses import dataclass

from app.config import settings


# -----------------------------------------------------------------------------
# Credits
# -----------------------------------------------------------------------------

DEFAULT_CREDITS = 10
CREDITS_PER_STAGING = 1
LOW_CREDITS_THRESHOLD = 3  # Warn when credits fall to this level or below

# -----------------------------------------------------------------------------
# Remixes and versions
# -----------------------------------------------------------------------------

FREE_REMIXES_PER_IMAGE = 2
CREDITS_PER_REMIX = 1
VERSION_WARNING_THRESHOLD = 5  # Warn when creating the 6th+ version

# -----------------------------------------------------------------------------
# Teams
# -----------------------------------------------------------------------------

INVITATION_EXPIRY_DAYS = 7
DEFAULT_MAX_TEAM_MEMBERS = 10
DEFAULT_ORGANIZATION_CREDITS = 500

# -----------------------------------------------------------------------------
# Images
# -----------------------------------------------------------------------------

ACCEPTED_IMAGE_TYPES = [
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
]
MAX_BATCH_SIZE = 10

# -----------------------------------------------------------------------------
# Jobs
# -----------------------------------------------------------------------------

OLD_JOB_RETENTION_DAYS = 90
STAGING_TOTAL_STEPS = 4

# Seconds a provider usually needs for a full staging run
PROVIDER_TIME_ESTIMATES = {
    "stable-diffusion": 30,
}
DEFAULT_TIME_ESTIMATE = 10

DEFAULT_PROVIDER = "stable-diffusion"


# -----------------------------------------------------------------------------
# Room types and styles
# -----------------------------------------------------------------------------

ROOM_TYPES: dict[str, str] = {
    "living-room": "Living Room",
    "bedroom-master": "Master Bedroom",
    "bedroom-guest": "Guest Bedroom",
    "bedroom-kids": "Kids Bedroom",
    "dining-room": "Dining Room",
    "kitchen": "Kitchen",
    "home-office": "Home Office",
    "bathroom": "Bathroom",
    "outdoor-patio": "Outdoor/Patio",
}

FURNITURE_STYLES: dict[str, str] = {
    "modern": "Modern",
    "traditional": "Traditional",
    "minimalist": "Minimalist",
    "mid-century": "Mid-Century",
    "scandinavian": "Scandinavian",
    "industrial": "Industrial",
    "coastal": "Coastal",
    "farmhouse": "Farmhouse",
    "luxury": "Luxury",
}


def room_label(room_type: str) -> str:
    """Display label for a room type, falling back to the raw ID."""
    return ROOM_TYPES.get(room_type, room_type)


def style_label(style: str) -> str:
    """Display label for a furniture style, falling back to the raw ID."""
    return FURNITURE_STYLES.get(style, style)


# -----------------------------------------------------------------------------
# Plans and top-ups
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class PlanConfig:
    slug: str
    name: str
    credits_per_month: int
    stripe_price_id: str
    max_team_members: int = 1


@dataclass(frozen=True)
class TopupPackage:
    id: str
    credits: int
    price_cents: int
    stripe_price_id: str


PLANS: dict[str, PlanConfig] = {
    "free": PlanConfig("free", "Free", 5, ""),
    "standard": PlanConfig("standard", "Standard", 60, settings.STRIPE_PRICE_STANDARD),
    "professional": PlanConfig("professional", "Professional", 150, settings.STRIPE_PRICE_PROFESSIONAL),
    "enterprise": PlanConfig(
        "enterprise", "Enterprise", 500, settings.STRIPE_PRICE_ENTERPRISE,
        max_team_members=DEFAULT_MAX_TEAM_MEMBERS,
    ),
}

PAID_PLAN_SLUGS = ("standard", "professional", "enterprise")

TOPUP_PACKAGES: dict[str, TopupPackage] = {
    "topup_10": TopupPackage("topup_10", 10, 500, settings.STRIPE_PRICE_TOPUP_10),
    "topup_25": TopupPackage("topup_25", 25, 1000, settings.STRIPE_PRICE_TOPUP_25),
    "topup_50": TopupPackage("topup_50", 50, 1750, settings.STRIPE_PRICE_TOPUP_50),
}


def plan_for_price(price_id: str | None) -> PlanConfig | None:
    """Find the plan a Stripe price ID belongs to."""
    if not price_id:
        return None
    for plan in PLANS.values():
        if plan.stripe_price_id and plan.stripe_price_id == price_id:
            return plan
    return None
