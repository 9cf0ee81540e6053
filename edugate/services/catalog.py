"""Static reference data: subscription tiers, premium tools and permission domains.

Everything here is plain data so tier rules can be reviewed in one place and
seeded into a fresh database by ``scripts/seed_catalog.py``.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from edugate.core.errors import UnknownTierError
from edugate.domain.actors import ROLE_SCHOOL_ADMIN, ROLE_STUDENT, ROLE_TEACHER
from edugate.domain.models import Tool


UNLIMITED = -1

TIER_FREE = "FREE"
TIER_STARTER = "STARTER"
TIER_PROFESSIONAL = "PROFESSIONAL"
TIER_ENTERPRISE = "ENTERPRISE"

TIERS = (TIER_FREE, TIER_STARTER, TIER_PROFESSIONAL, TIER_ENTERPRISE)
DEFAULT_TIER = TIER_FREE

TOOL_PREPMASTER = "prepmaster"
TOOL_SOCRATES = "socrates"
TOOL_BURSARY = "bursary"
TOOL_ROLLCALL = "rollcall"


@dataclass(frozen=True)
class TierLimits:
    # Limits applied to a subscription when it moves onto a tier.
    max_admins: int
    ai_credits: int
    tools: tuple[str, ...]


_TIER_LIMITS: dict[str, TierLimits] = {
    TIER_FREE: TierLimits(max_admins=10, ai_credits=0, tools=(TOOL_BURSARY,)),
    TIER_STARTER: TierLimits(
        max_admins=50,
        ai_credits=500,
        tools=(TOOL_PREPMASTER, TOOL_SOCRATES, TOOL_BURSARY),
    ),
    TIER_ENTERPRISE: TierLimits(
        max_admins=UNLIMITED,
        ai_credits=UNLIMITED,
        tools=(TOOL_PREPMASTER, TOOL_SOCRATES, TOOL_ROLLCALL, TOOL_BURSARY),
    ),
}

# PROFESSIONAL is a legacy label; tenants on it get STARTER entitlements.
_TIER_ALIASES = {TIER_PROFESSIONAL: TIER_STARTER}


def normalize_tier(tier: str) -> str:
    normalized = tier.strip().upper()
    if normalized not in TIERS:
        raise UnknownTierError(f"Unknown subscription tier: {tier}", tier=tier)
    return normalized


def tier_limits(tier: str) -> TierLimits:
    normalized = normalize_tier(tier)
    return _TIER_LIMITS[_TIER_ALIASES.get(normalized, normalized)]


def tools_for_tier(tier: str) -> frozenset[str]:
    return frozenset(tier_limits(tier).tools)


@dataclass(frozen=True)
class ToolSeed:
    slug: str
    name: str
    description: str
    target_roles: tuple[str, ...]
    sort_order: int
    is_core: bool = False


TOOL_SEEDS: tuple[ToolSeed, ...] = (
    ToolSeed(
        slug=TOOL_PREPMASTER,
        name="PrepMaster",
        description="Exam preparation with AI-generated practice questions",
        target_roles=(ROLE_STUDENT,),
        sort_order=1,
    ),
    ToolSeed(
        slug=TOOL_SOCRATES,
        name="Socrates",
        description="AI teaching assistant for lesson planning and marking",
        target_roles=(ROLE_TEACHER, ROLE_SCHOOL_ADMIN),
        sort_order=2,
    ),
    ToolSeed(
        slug=TOOL_BURSARY,
        name="Bursary Pro",
        description="Fee management and payment tracking",
        target_roles=(ROLE_SCHOOL_ADMIN,),
        sort_order=3,
        is_core=True,
    ),
    ToolSeed(
        slug=TOOL_ROLLCALL,
        name="RollCall",
        description="Attendance capture and reporting",
        target_roles=(ROLE_SCHOOL_ADMIN,),
        sort_order=4,
    ),
)


PERMISSION_RESOURCES: dict[str, str] = {
    "OVERVIEW": "Overview",
    "ANALYTICS": "Analytics",
    "SUBSCRIPTIONS": "Subscriptions",
    "STUDENTS": "Students",
    "STAFF": "Staff",
    "CLASSES": "Classes",
    "SUBJECTS": "Subjects",
    "TIMETABLES": "Timetables",
    "CALENDAR": "Calendar",
    "ADMISSIONS": "Admissions",
    "SESSIONS": "Sessions",
    "EVENTS": "Events",
    "GRADES": "Grades",
    "CURRICULUM": "Curriculum",
    "RESOURCES": "Resources",
    "TRANSFERS": "Transfers",
    "INTEGRATIONS": "Integrations",
}

PERMISSION_READ = "READ"
PERMISSION_WRITE = "WRITE"
PERMISSION_ADMIN = "ADMIN"
PERMISSION_TYPES = (PERMISSION_READ, PERMISSION_WRITE, PERMISSION_ADMIN)


def permission_description(resource: str, type_: str) -> str:
    return f"{type_.capitalize()} access to {PERMISSION_RESOURCES[resource]}"


async def seed_tools(session: AsyncSession) -> int:
    # Insert missing catalog tools and refresh metadata of existing ones by slug.
    result = await session.execute(select(Tool))
    existing = {tool.slug: tool for tool in result.scalars().all()}
    created = 0
    for seed in TOOL_SEEDS:
        tool = existing.get(seed.slug)
        if tool is None:
            session.add(
                Tool(
                    id=seed.slug,
                    slug=seed.slug,
                    name=seed.name,
                    description=seed.description,
                    target_roles=list(seed.target_roles),
                    is_core=seed.is_core,
                    is_active=True,
                    sort_order=seed.sort_order,
                )
            )
            created += 1
            continue
        tool.name = seed.name
        tool.description = seed.description
        tool.target_roles = list(seed.target_roles)
        tool.is_core = seed.is_core
        tool.sort_order = seed.sort_order
    await session.flush()
    return created
