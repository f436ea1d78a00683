"""
XP and level progression.

Levels grow in three bands: linear up to 10, then a power curve with the
configured exponent up to 30, then a steeper curve up to the cap.
"""

import math
from typing import Any, Dict, List

from django.db import transaction

BASE_XP = 500
EXPONENT = 1.15
MAX_LEVEL = 100
MILESTONE_LEVELS = 50

XP_REWARDS = {
    "lesson_completed": 10,
    "course_completed": 100,
    "review_published": 25,
    "certification_passed": 200,
}


def xp_for_level(level: int) -> int:
    """XP needed to go from `level - 1` to `level`."""
    if level <= 1:
        return 0
    if level <= 10:
        return math.floor(BASE_XP * level * 0.8)
    if level <= 30:
        return math.floor(BASE_XP * math.pow(level * 0.6, EXPONENT))
    return math.floor(BASE_XP * math.pow(level * 0.5, 1.25))


def total_xp_for_level(level: int) -> int:
    """Cumulative XP required to reach `level`."""
    return sum(xp_for_level(lvl) for lvl in range(2, min(level, MAX_LEVEL) + 1))


def level_from_xp(total_xp: int) -> int:
    level = 1
    required = 0
    while level < MAX_LEVEL:
        required += xp_for_level(level + 1)
        if total_xp < required:
            break
        level += 1
    return level


def level_progress(total_xp: int) -> Dict[str, Any]:
    level = level_from_xp(total_xp)
    is_max_level = level >= MAX_LEVEL
    current_level_xp = total_xp_for_level(level)
    next_level_xp = current_level_xp if is_max_level else total_xp_for_level(level + 1)

    xp_in_current_level = total_xp - current_level_xp
    span = next_level_xp - current_level_xp
    if is_max_level or span <= 0:
        percentage = 100.0
    else:
        percentage = min(100.0, max(0.0, xp_in_current_level / span * 100))

    return {
        "current_level": level,
        "total_xp": total_xp,
        "current_level_xp": current_level_xp,
        "next_level_xp": next_level_xp,
        "xp_in_current_level": xp_in_current_level,
        "xp_needed_for_next_level": 0 if is_max_level else next_level_xp - total_xp,
        "progress_percentage": round(percentage, 2),
        "is_max_level": is_max_level,
    }


def level_milestones(limit: int = MILESTONE_LEVELS) -> List[Dict[str, int]]:
    milestones = []
    cumulative = 0
    for level in range(1, limit + 1):
        cumulative += xp_for_level(level)
        milestones.append(
            {"level": level, "total_xp_required": cumulative, "xp_for_level": xp_for_level(level)}
        )
    return milestones


def award_xp(profile, amount: int) -> Dict[str, Any]:
    """Add XP to a profile and recompute its level."""
    from .models import Profile

    with transaction.atomic():
        locked = Profile.objects.select_for_update().get(pk=profile.pk)
        old_level = locked.level
        locked.total_xp += max(0, int(amount))
        locked.level = level_from_xp(locked.total_xp)
        locked.save(update_fields=["total_xp", "level", "updated_at"])

    profile.total_xp = locked.total_xp
    profile.level = locked.level
    return {
        "old_level": old_level,
        "new_level": locked.level,
        "leveled_up": locked.level > old_level,
        "levels_gained": locked.level - old_level,
        "progress": level_progress(locked.total_xp),
    }
