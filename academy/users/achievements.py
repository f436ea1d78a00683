"""
Achievement catalog and unlocking.

Each achievement has a condition evaluated against a snapshot of the user's
learning stats. Unlocking is recorded once per user and grants the listed
XP through the regular level system.
"""

import logging
from collections import Counter
from typing import Any, Dict, List

from .levels import award_xp
from .models import Profile, UnlockedAchievement

logger = logging.getLogger(__name__)

WEB3_CATEGORIES = frozenset(
    {
        "Web3 Development",
        "Blockchain Fundamentals",
        "DeFi",
        "NFTs & Digital Art",
        "Smart Contracts",
        "Security & Auditing",
        "DAOs & Governance",
    }
)

ACHIEVEMENTS: List[Dict[str, Any]] = [
    {
        "id": "first-lesson",
        "title": "First Steps",
        "description": "Complete your first lesson",
        "icon": "play",
        "difficulty": "easy",
        "xp_reward": 10,
        "condition": {"type": "lessons_completed", "value": 1},
    },
    {
        "id": "lesson-marathon",
        "title": "Marathon Learner",
        "description": "Complete 50 lessons",
        "icon": "zap",
        "difficulty": "medium",
        "xp_reward": 150,
        "condition": {"type": "lessons_completed", "value": 50},
    },
    {
        "id": "first-purchase",
        "title": "Invested in Yourself",
        "description": "Buy your first course",
        "icon": "wallet",
        "difficulty": "easy",
        "xp_reward": 25,
        "condition": {"type": "courses_purchased", "value": 1},
    },
    {
        "id": "first-course",
        "title": "Graduate",
        "description": "Complete a course",
        "icon": "graduation-cap",
        "difficulty": "easy",
        "xp_reward": 50,
        "condition": {"type": "completed_courses", "value": 1},
    },
    {
        "id": "course-collector",
        "title": "Course Collector",
        "description": "Complete 5 courses",
        "icon": "library",
        "difficulty": "hard",
        "xp_reward": 250,
        "condition": {"type": "completed_courses", "value": 5},
    },
    {
        "id": "web3-pioneer",
        "title": "Web3 Pioneer",
        "description": "Complete 3 Web3 courses",
        "icon": "globe",
        "difficulty": "medium",
        "xp_reward": 150,
        "condition": {"type": "web3_courses_completed", "value": 3},
    },
    {
        "id": "defi-specialist",
        "title": "DeFi Specialist",
        "description": "Complete a DeFi course",
        "icon": "coins",
        "difficulty": "medium",
        "xp_reward": 75,
        "condition": {"type": "category_completed", "category": "DeFi", "count": 1},
    },
    {
        "id": "polymath",
        "title": "Polymath",
        "description": "Complete courses in 3 different categories",
        "icon": "layers",
        "difficulty": "hard",
        "xp_reward": 200,
        "condition": {"type": "unique_categories", "value": 3},
    },
    {
        "id": "dedicated-learner",
        "title": "Dedicated Learner",
        "description": "Watch 10 hours of lessons",
        "icon": "clock",
        "difficulty": "medium",
        "xp_reward": 100,
        "condition": {"type": "total_watch_time", "value": 10 * 3600},
    },
    {
        "id": "certified",
        "title": "Certified",
        "description": "Earn your first certificate",
        "icon": "award",
        "difficulty": "medium",
        "xp_reward": 100,
        "condition": {"type": "certificates_earned", "value": 1},
    },
    {
        "id": "critic",
        "title": "Critic",
        "description": "Write 5 course reviews",
        "icon": "message-square",
        "difficulty": "medium",
        "xp_reward": 50,
        "condition": {"type": "reviews_written", "value": 5},
    },
    {
        "id": "profile-complete",
        "title": "Known Face",
        "description": "Add a bio and an avatar to your profile",
        "icon": "user",
        "difficulty": "easy",
        "xp_reward": 15,
        "condition": {"type": "profile_complete"},
    },
]


def collect_stats(user) -> Dict[str, Any]:
    """Learning stats the achievement conditions are checked against."""
    from ..payments.models import Purchase

    profile = Profile.objects.get(user=user)
    purchases = list(
        Purchase.objects.filter(user=user, status=Purchase.Status.ACTIVE).select_related("course")
    )
    completed = [purchase for purchase in purchases if purchase.is_completed]

    return {
        "lessons_completed": sum(len(purchase.completed_lessons) for purchase in purchases),
        "total_watch_time": sum(purchase.total_watch_time for purchase in purchases),
        "courses_purchased": len(purchases),
        "completed_courses": len(completed),
        "web3_courses_completed": sum(1 for p in completed if p.course.category in WEB3_CATEGORIES),
        "completed_by_category": Counter(purchase.course.category for purchase in completed),
        "certificates_earned": profile.certificates_earned,
        "reviews_written": profile.reviews_written,
        "profile_complete": bool(profile.bio and profile.avatar),
    }


def condition_met(condition: Dict[str, Any], stats: Dict[str, Any]) -> bool:
    kind = condition["type"]
    if kind == "category_completed":
        return stats["completed_by_category"][condition["category"]] >= condition.get("count", 1)
    if kind == "unique_categories":
        return len(stats["completed_by_category"]) >= condition["value"]
    if kind == "profile_complete":
        return stats["profile_complete"]
    if kind not in stats:
        return False
    return stats[kind] >= condition["value"]


def check_achievements(user) -> List[Dict[str, Any]]:
    """Unlock every achievement the user now qualifies for; returns the new ones."""
    unlocked_ids = set(
        UnlockedAchievement.objects.filter(user=user).values_list("achievement_id", flat=True)
    )
    pending = [a for a in ACHIEVEMENTS if a["id"] not in unlocked_ids]
    if not pending:
        return []

    stats = collect_stats(user)
    newly_unlocked = []
    for achievement in pending:
        if not condition_met(achievement["condition"], stats):
            continue
        _, created = UnlockedAchievement.objects.get_or_create(
            user=user,
            achievement_id=achievement["id"],
            defaults={"xp_earned": achievement["xp_reward"]},
        )
        if created:
            newly_unlocked.append(achievement)
            logger.info("Achievement %s unlocked for user %s", achievement["id"], user.pk)

    xp_total = sum(achievement["xp_reward"] for achievement in newly_unlocked)
    if xp_total:
        award_xp(user.profile, xp_total)
    return newly_unlocked


def user_achievements(user) -> List[Dict[str, Any]]:
    unlocked = {
        record.achievement_id: record for record in UnlockedAchievement.objects.filter(user=user)
    }
    return [
        {
            **achievement,
            "unlocked": achievement["id"] in unlocked,
            "unlocked_at": unlocked[achievement["id"]].unlocked_at if achievement["id"] in unlocked else None,
        }
        for achievement in ACHIEVEMENTS
    ]
