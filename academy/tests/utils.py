"""
Shared builders for the academy test suite.
"""

from datetime import timedelta
from decimal import Decimal

from django.contrib.auth.models import User
from django.db.models import Sum
from django.utils import timezone
from rest_framework_simplejwt.tokens import RefreshToken

from academy.certifications.models import CertificationAttempt, CertificationQuestion, ProfessionalCertification
from academy.courses.models import Course, Lesson, Section
from academy.payments.models import PaymentToken, Purchase
from academy.users.models import PaymentWallet, Profile, UnlockedAchievement

ESCROW_CONTRACT = "0x" + "e" * 40


def create_user(username, wallet_address=None, **profile_fields):
    user = User.objects.create_user(username=username)
    profile = user.profile
    if wallet_address:
        profile.wallet_address = wallet_address
    for field, value in profile_fields.items():
        setattr(profile, field, value)
    profile.save()
    return user


def create_admin(username="admin"):
    return create_user(username, role=Profile.Role.ADMIN)


def create_instructor(username="satoshi", wallet_address="0x" + "1" * 40):
    return create_user(
        username,
        wallet_address=wallet_address,
        is_instructor=True,
        instructor_verified=True,
        role=Profile.Role.INSTRUCTOR,
    )


def authenticate(client, user):
    """Put an access token for `user` into the client's auth cookie."""
    client.cookies["access_token"] = str(RefreshToken.for_user(user).access_token)


def create_token(**fields):
    defaults = {
        "symbol": "usdc",
        "name": "USD Coin",
        "chain_id": 8453,
        "chain_name": "Base",
        "rpc_url": "https://rpc.example.org",
        "explorer_url": "https://explorer.example.org",
        "contract_address": "0x" + "c" * 40,
        "payment_contract_address": ESCROW_CONTRACT,
        "decimals": 6,
        "is_stablecoin": True,
        "price_oracle_type": PaymentToken.PriceOracle.FIXED,
        "fixed_usd_price": Decimal("1.0"),
    }
    defaults.update(fields)
    return PaymentToken.objects.create(**defaults)


def create_payout_wallet(instructor, token, address="0x" + "2" * 40):
    return PaymentWallet.objects.create(
        user=instructor,
        blockchain=token.blockchain,
        chain_id=token.chain_id,
        address=address,
        is_primary=True,
    )


def create_course(instructor, title="Solidity Basics", lessons=2, **fields):
    defaults = {
        "title": title,
        "description": "Learn to write smart contracts.",
        "price_usd": Decimal("50.00"),
        "category": Course.Category.SMART_CONTRACTS,
        "status": Course.Status.PUBLISHED,
        "thumbnail": "https://cdn.example.org/thumb.png",
    }
    defaults.update(fields)
    course = Course.objects.create(instructor=instructor, **defaults)
    section = Section.objects.create(course=course, title="Getting started", order=1)
    for order in range(1, lessons + 1):
        Lesson.objects.create(
            section=section,
            title=f"Lesson {order}",
            video_key=f"courses/{course.pk}/lesson-{order}.mp4",
            duration=300,
            order=order,
        )
    course.refresh_from_db()
    return course


def create_purchase(user, course, token=None, days_ago=0, **fields):
    created = timezone.now() - timedelta(days=days_ago)
    defaults = {
        "payment_token": token,
        "amount_in_token": "50000000",
        "amount_in_usd": Decimal("50.00"),
        "transaction_hash": "0x" + format(Purchase.objects.count() + 1, "064x"),
        "from_address": user.profile.wallet_address or "",
        "escrow_id": f"{Purchase.objects.count() + 1}",
        "escrow_status": Purchase.EscrowStatus.LOCKED,
        "escrow_release_date": created + timedelta(days=14),
        "status": Purchase.Status.ACTIVE,
    }
    defaults.update(fields)
    purchase = Purchase.objects.create(user=user, course=course, **defaults)
    if days_ago:
        Purchase.objects.filter(pk=purchase.pk).update(created_at=created)
        purchase.refresh_from_db()
    return purchase


def create_certification(questions=5, **fields):
    defaults = {
        "title": "Solidity Developer",
        "description": "Smart contract development on EVM chains.",
        "category": "smart-contracts",
        "questions_per_test": min(questions, 4) or 1,
        "duration": 30,
        "passing_score": 70,
        "max_attempts": 2,
        "status": ProfessionalCertification.Status.PUBLISHED,
    }
    defaults.update(fields)
    certification = ProfessionalCertification.objects.create(**defaults)
    for order in range(questions):
        CertificationQuestion.objects.create(
            certification=certification,
            question=f"Question {order + 1}?",
            options=[
                {"text": f"Right {order + 1}", "is_correct": True},
                {"text": f"Wrong {order + 1}", "is_correct": False},
            ],
            order=order,
        )
    return certification


def create_completed_attempt(user, certification, score=90, **fields):
    defaults = {
        "attempt_number": certification.attempts.filter(user=user).count() + 1,
        "status": CertificationAttempt.Status.COMPLETED,
        "score": score,
        "passed": score >= certification.passing_score,
        "total_questions": certification.questions_per_test,
        "correct_answers": round(certification.questions_per_test * score / 100),
        "duration": 600,
        "completed_at": timezone.now(),
    }
    defaults.update(fields)
    return CertificationAttempt.objects.create(user=user, certification=certification, **defaults)


def achievement_xp(user):
    """XP a user has received from unlocked achievements."""
    return UnlockedAchievement.objects.filter(user=user).aggregate(total=Sum("xp_earned"))["total"] or 0
