"""Whether a user's autonomous sessions may run right now.

Checked at execution time, never at scheduling time, so flipping a flag takes
effect for jobs that are already queued.
"""

import uuid
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from circadian.config import get_settings
from circadian.models.user import User


@dataclass
class Eligibility:
    eligible: bool
    reason: str | None = None


async def check_eligibility(
    db: AsyncSession,
    user_id: uuid.UUID,
    global_enabled: bool | None = None,
) -> Eligibility:
    """Evaluate the global switch, then the user's profile and feature flag."""
    if global_enabled is None:
        global_enabled = get_settings().autonomous_agents_enabled
    if not global_enabled:
        return Eligibility(False, "Autonomous agents disabled globally")

    user = await db.get(User, user_id)
    if user is None:
        return Eligibility(False, "User not found")
    if not user.is_active:
        return Eligibility(False, "Account inactive")
    if not user.autonomous_agents_enabled:
        return Eligibility(False, "Autonomous agents disabled for user")
    return Eligibility(True)
