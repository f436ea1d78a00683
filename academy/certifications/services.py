"""
Certification test engine.

Attempts are persisted with their drawn question set (including correctness
data, never sent to the client) and a session token, so a test can be
resumed after a reload and graded on any worker. Scoring happens only here.
"""

import hashlib
import logging
import math
import random
import re
import secrets
from decimal import Decimal
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from ..courses.services.video_sessions import client_ip
from ..payments import stripe_checkout
from ..users.achievements import check_achievements
from ..users.levels import XP_REWARDS, award_xp
from ..users.wallet import is_valid_tx_hash
from .exceptions import (
    AttemptLimitReached,
    CertificationError,
    CertificationNotFound,
    InsufficientQuestions,
    InvalidTestSession,
    TimeLimitExceeded,
)
from .models import (
    AttemptReset,
    CertificationAttempt,
    CertificationQuestion,
    CourseCertificate,
    ProfessionalCertificate,
    ProfessionalCertification,
    completion_grade,
    grade_for_score,
)

logger = logging.getLogger(__name__)

SUBMIT_GRACE_SECONDS = 60
SECURITY_EVENTS = {
    "tab-switch": "tab_switches",
    "copy-attempt": "copy_attempts",
    "paste-attempt": "paste_attempts",
    "right-click": "right_click_attempts",
}
SOLANA_SIGNATURE_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{64,88}$")
CRYPTO_METHODS = ("evm", "solana")


def _rng() -> random.Random:
    return random.SystemRandom()


def _snapshot(question: CertificationQuestion, shuffle_options: bool) -> Dict[str, Any]:
    options = [dict(option) for option in (question.options or [])]
    if shuffle_options and question.type == CertificationQuestion.Type.MULTIPLE_CHOICE:
        _rng().shuffle(options)
    return {
        "id": question.pk,
        "question": question.question,
        "type": question.type,
        "options": options,
        "correct_answer": question.correct_answer,
        "points": question.points,
        "explanation": question.explanation,
    }


def sanitize_questions(question_set: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Client view of the drawn questions without any correctness data."""
    sanitized = []
    for index, question in enumerate(question_set, start=1):
        entry = {
            "id": question["id"],
            "question": question["question"],
            "type": question["type"],
            "points": question["points"],
            "order": index,
        }
        if question["type"] == CertificationQuestion.Type.MULTIPLE_CHOICE:
            entry["options"] = [{"text": option.get("text")} for option in question["options"]]
        sanitized.append(entry)
    return sanitized


def _attempt_payload(attempt: CertificationAttempt, resumed: bool = False) -> Dict[str, Any]:
    certification = attempt.certification
    return {
        "attempt_id": attempt.pk,
        "session_token": attempt.session_token,
        "questions": sanitize_questions(attempt.question_set),
        "time_remaining": attempt.time_remaining,
        "attempt_number": attempt.attempt_number,
        "resumed": resumed,
        "settings": {
            "allow_copy_paste": certification.allow_copy_paste,
            "allow_tab_switch": certification.allow_tab_switch,
            "tab_switch_warnings": certification.tab_switch_warnings,
        },
    }


def get_published_certification(certification_id) -> ProfessionalCertification:
    certification = ProfessionalCertification.objects.filter(
        pk=certification_id, status=ProfessionalCertification.Status.PUBLISHED
    ).first()
    if certification is None:
        raise CertificationNotFound("Certification not found")
    return certification


def start_attempt(user, certification_id, request=None) -> Dict[str, Any]:
    certification = get_published_certification(certification_id)
    pool = list(certification.questions.all())
    if len(pool) < certification.questions_per_test:
        raise InsufficientQuestions(
            f"Insufficient questions. Need {certification.questions_per_test}, have {len(pool)}"
        )

    current = CertificationAttempt.objects.filter(
        user=user, certification=certification, status=CertificationAttempt.Status.IN_PROGRESS
    ).first()
    if current is not None:
        if current.time_remaining > 0:
            return _attempt_payload(current, resumed=True)
        current.cancel("Time limit exceeded")

    used = certification.attempts_used(user)
    if used >= certification.max_attempts:
        raise AttemptLimitReached(
            "Maximum attempts reached",
            details={
                "max_attempts": certification.max_attempts,
                "can_reset_attempts": certification.attempt_reset_enabled,
                "reset_price": str(certification.attempt_reset_price_usd),
            },
        )

    selected = _rng().sample(pool, certification.questions_per_test)
    if not certification.shuffle_questions:
        selected.sort(key=lambda question: (question.order, question.pk))

    ip_address = client_ip(request) if request is not None else None
    attempt = CertificationAttempt.objects.create(
        user=user,
        certification=certification,
        attempt_number=used + 1,
        session_token=secrets.token_hex(32),
        question_set=[_snapshot(q, certification.shuffle_options) for q in selected],
        total_questions=len(selected),
        user_agent=(request.META.get("HTTP_USER_AGENT", "") if request is not None else "")[:500],
        ip_hash=hashlib.sha256((ip_address or "unknown").encode()).hexdigest()[:16],
    )

    logger.info("User %s started attempt %s on certification %s", user.pk, attempt.attempt_number, certification.pk)
    return _attempt_payload(attempt)


def _as_bool(value) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    return None


def grade_answers(question_set: List[Dict[str, Any]], answers) -> Dict[str, Any]:
    by_id = {str(question["id"]): question for question in question_set}
    graded = []
    seen = set()
    correct = 0

    for answer in answers or []:
        if not isinstance(answer, dict):
            continue
        question_id = str(answer.get("question_id"))
        question = by_id.get(question_id)
        if question is None or question_id in seen:
            continue
        seen.add(question_id)

        given = answer.get("answer")
        if question["type"] == CertificationQuestion.Type.MULTIPLE_CHOICE:
            expected = next((o.get("text") for o in question["options"] if o.get("is_correct")), None)
            is_correct = expected is not None and given == expected
        else:
            is_correct = question["correct_answer"] is not None and _as_bool(given) == question["correct_answer"]

        correct += int(is_correct)
        graded.append(
            {
                "question_id": question["id"],
                "answer": given,
                "is_correct": is_correct,
                "points": question["points"] if is_correct else 0,
                "time_spent": answer.get("time_spent") or 0,
            }
        )

    total = len(question_set)
    score = math.floor(correct * 100 / total + 0.5) if total else 0
    return {
        "answers": graded,
        "correct": correct,
        "incorrect": len(graded) - correct,
        "unanswered": total - len(graded),
        "total": total,
        "score": score,
    }


def _apply_security_log(attempt: CertificationAttempt, security_log) -> None:
    if not isinstance(security_log, list):
        return
    counts = {field: 0 for field in SECURITY_EVENTS.values()}
    timestamps = []
    for event in security_log:
        if not isinstance(event, dict):
            continue
        field = SECURITY_EVENTS.get(event.get("type"))
        if field:
            counts[field] += 1
            if field == "tab_switches" and event.get("timestamp"):
                timestamps.append(event["timestamp"])
    for field, value in counts.items():
        setattr(attempt, field, value)
    attempt.tab_switch_timestamps = timestamps


def submit_attempt(user, attempt_id, answers, session_token, security_log=None) -> Dict[str, Any]:
    claimed = CertificationAttempt.objects.filter(
        pk=attempt_id, user=user, status=CertificationAttempt.Status.IN_PROGRESS
    ).update(status=CertificationAttempt.Status.PROCESSING)
    if not claimed:
        raise CertificationError("Invalid attempt or already submitted", status_code=404)

    attempt = CertificationAttempt.objects.select_related("certification").get(pk=attempt_id)
    certification = attempt.certification

    if not session_token or not secrets.compare_digest(str(session_token), attempt.session_token):
        CertificationAttempt.objects.filter(pk=attempt.pk).update(status=CertificationAttempt.Status.IN_PROGRESS)
        raise InvalidTestSession("Invalid session")

    _apply_security_log(attempt, security_log)

    now = timezone.now()
    elapsed = int((now - attempt.started_at).total_seconds())
    if elapsed > certification.duration * 60 + SUBMIT_GRACE_SECONDS:
        attempt.save()
        attempt.cancel("Time limit exceeded")
        logger.info("Attempt %s cancelled after %ss", attempt.pk, elapsed)
        raise TimeLimitExceeded("Time limit exceeded")

    result = grade_answers(attempt.question_set, answers)
    attempt.answers = result["answers"]
    attempt.correct_answers = result["correct"]
    attempt.incorrect_answers = result["incorrect"]
    attempt.unanswered_questions = result["unanswered"]
    attempt.score = result["score"]
    attempt.passed = result["score"] >= certification.passing_score
    attempt.completed_at = now
    attempt.duration = elapsed
    attempt.session_token = ""
    attempt.status = CertificationAttempt.Status.COMPLETED
    attempt.save()

    certification.refresh_statistics()
    if attempt.passed:
        award_xp(user.profile, XP_REWARDS["certification_passed"])

    logger.info(
        "Attempt %s on certification %s scored %s (passed=%s)",
        attempt.pk,
        certification.pk,
        attempt.score,
        attempt.passed,
    )
    return {
        "attempt_id": attempt.pk,
        "score": attempt.score,
        "passed": attempt.passed,
        "correct_answers": attempt.correct_answers,
        "incorrect_answers": attempt.incorrect_answers,
        "unanswered_questions": attempt.unanswered_questions,
        "total_questions": result["total"],
        "duration": attempt.duration,
        "grade": grade_for_score(attempt.score),
        "attempt_number": attempt.attempt_number,
    }


def attempt_review(attempt: CertificationAttempt) -> List[Dict[str, Any]]:
    """Questions of a completed attempt with the caller's answers and solutions."""
    by_question = {str(answer["question_id"]): answer for answer in attempt.answers}
    review = []
    for question in attempt.question_set:
        given = by_question.get(str(question["id"]))
        review.append(
            {
                "question": question["question"],
                "type": question["type"],
                "options": question["options"],
                "correct_answer": question["correct_answer"],
                "user_answer": given["answer"] if given else None,
                "is_correct": given["is_correct"] if given else None,
                "points": question["points"],
                "explanation": question["explanation"],
            }
        )
    return review


# --- payments: attempt resets and certificates ---


def _check_crypto_payment(payment_method: str, transaction_hash: Optional[str]) -> None:
    if payment_method == "evm" and is_valid_tx_hash(transaction_hash):
        return
    if payment_method == "solana" and isinstance(transaction_hash, str) and SOLANA_SIGNATURE_RE.match(transaction_hash):
        return
    raise CertificationError("Invalid transaction hash")


def perform_attempt_reset(user, certification, payment_method: str, payment_id: str = "", transaction_hash: str = "") -> AttemptReset:
    """Record a paid reset and clear the user's attempts. Idempotent per payment id."""
    if payment_id:
        existing = AttemptReset.objects.filter(payment_id=payment_id, user=user).first()
        if existing is not None:
            return existing

    with transaction.atomic():
        reset = AttemptReset.objects.create(
            user=user,
            certification=certification,
            payment_amount=certification.attempt_reset_price_usd,
            payment_currency="USD",
            payment_method=payment_method,
            payment_id=payment_id or "",
            transaction_hash=transaction_hash or "",
            attempts_reset_count=certification.max_attempts,
        )
        # attempts backing an issued certificate are kept
        certification.attempts.filter(user=user, certificate__isnull=True).delete()

    logger.info("Reset attempts of user %s on certification %s (%s)", user.pk, certification.pk, payment_method)
    return reset


def reset_attempts(user, certification_id, payment_method, payment_id=None, transaction_hash=None) -> Dict[str, Any]:
    certification = ProfessionalCertification.objects.filter(pk=certification_id).first()
    if certification is None:
        raise CertificationNotFound("Certification not found")
    if not certification.attempt_reset_enabled:
        raise CertificationError("Attempt reset not available for this certification")
    if certification.attempts_used(user) < certification.max_attempts:
        raise CertificationError("You still have attempts remaining")

    if payment_method == AttemptReset.PaymentMethod.STRIPE:
        checkout = stripe_checkout.create_checkout_session(
            user,
            f"Attempt reset: {certification.title}",
            certification.attempt_reset_price_usd,
            {"kind": stripe_checkout.KIND_ATTEMPT_RESET, "certification_id": certification.pk},
            success_path=f"/professional-certifications/{certification.slug}",
            cancel_path=f"/professional-certifications/{certification.slug}",
        )
        return {"requires_redirect": True, **checkout}

    if payment_method not in CRYPTO_METHODS:
        raise CertificationError("Invalid payment method")
    _check_crypto_payment(payment_method, transaction_hash)
    reset = perform_attempt_reset(
        user, certification, payment_method, payment_id=payment_id or "", transaction_hash=transaction_hash
    )
    return {
        "message": "Attempts reset successfully",
        "attempts_available": certification.max_attempts,
        "reset_record": reset.pk,
    }


def _certificate_number() -> str:
    """Number unique across professional and course certificates."""
    year = timezone.now().year
    while True:
        number = f"{settings.CERTIFICATE_NUMBER_PREFIX}-{year}-{secrets.token_hex(3).upper()}"
        taken = (
            ProfessionalCertificate.objects.filter(certificate_number=number).exists()
            or CourseCertificate.objects.filter(certificate_number=number).exists()
        )
        if not taken:
            return number


def issue_certificate(attempt: CertificationAttempt, payment_method: str, payment_id: str = "", amount=None) -> ProfessionalCertificate:
    """Create the paid certificate for a passed attempt. Idempotent per attempt."""
    existing = ProfessionalCertificate.objects.filter(attempt=attempt).first()
    if existing is not None:
        return existing

    certification = attempt.certification
    profile = attempt.user.profile
    number = _certificate_number()
    now = timezone.now()

    with transaction.atomic():
        certificate = ProfessionalCertificate.objects.create(
            user=attempt.user,
            certification=certification,
            attempt=attempt,
            certificate_number=number,
            student_name=profile.public_name,
            student_wallet=profile.wallet_address or "",
            certification_title=certification.title,
            category=certification.category,
            level=certification.level,
            score=attempt.score,
            grade=grade_for_score(attempt.score),
            total_questions=attempt.total_questions,
            correct_answers=attempt.correct_answers,
            test_duration=attempt.duration,
            completed_date=attempt.completed_at or now,
            attempt_number=attempt.attempt_number,
            verification_url=f"{settings.FRONTEND_URL}/verify-professional/{number}",
            verification_code=secrets.token_hex(8).upper(),
            paid=True,
            payment_amount=amount if amount is not None else certification.current_certificate_price,
            payment_currency="USD",
            payment_method=payment_method,
            payment_id=payment_id or "",
            paid_at=now,
            status=ProfessionalCertificate.Status.ACTIVE,
            issued_date=now,
        )
        attempt.certificate_issued = True
        attempt.save(update_fields=["certificate_issued", "updated_at"])
        profile.increment("certificates_earned")

    logger.info("Issued certificate %s to user %s", number, attempt.user_id)
    check_achievements(attempt.user)
    return certificate


def eligible_attempts(user):
    return CertificationAttempt.objects.filter(
        user=user,
        status=CertificationAttempt.Status.COMPLETED,
        passed=True,
        certificate_issued=False,
    ).select_related("certification")


def purchase_certificate(user, attempt_id, payment_method, transaction_hash=None) -> Dict[str, Any]:
    attempt = (
        CertificationAttempt.objects.select_related("certification", "user__profile")
        .filter(pk=attempt_id, user=user, status=CertificationAttempt.Status.COMPLETED, passed=True)
        .first()
    )
    if attempt is None:
        raise CertificationError("Eligible attempt not found", status_code=404)
    if attempt.certificate_issued or ProfessionalCertificate.objects.filter(attempt=attempt).exists():
        raise CertificationError("Certificate already purchased")

    certification = attempt.certification
    price = certification.current_certificate_price

    if payment_method == "stripe":
        checkout = stripe_checkout.create_checkout_session(
            user,
            f"Certificate: {certification.title}",
            price,
            {"kind": stripe_checkout.KIND_CERTIFICATE, "attempt_id": attempt.pk},
            success_path="/certificates",
            cancel_path=f"/professional-certifications/{certification.slug}",
        )
        return {"requires_redirect": True, **checkout}

    if payment_method not in CRYPTO_METHODS:
        raise CertificationError("Invalid payment method")
    _check_crypto_payment(payment_method, transaction_hash)
    certificate = issue_certificate(attempt, payment_method, payment_id=transaction_hash, amount=price)
    return {"message": "Certificate issued", "certificate": certificate}


def issue_course_certificate(purchase) -> Optional[CourseCertificate]:
    """
    Certificate of completion for a finished purchase. Returns the existing
    certificate when one was already issued, and None for courses that do
    not award certificates or purchases that are not complete.
    """
    course = purchase.course
    if not purchase.is_completed or not course.has_certificate:
        return None
    existing = CourseCertificate.objects.filter(user_id=purchase.user_id, course=course).first()
    if existing is not None:
        return existing

    profile = purchase.user.profile
    instructor_profile = course.instructor.profile
    number = _certificate_number()
    final_score = 100

    with transaction.atomic():
        certificate = CourseCertificate.objects.create(
            user=purchase.user,
            course=course,
            purchase=purchase,
            certificate_number=number,
            student_name=profile.public_name,
            student_wallet=profile.wallet_address or "",
            course_title=course.title,
            instructor_name=instructor_profile.public_name,
            category=course.category,
            skills=(course.tags or [course.category])[:5],
            completed_date=purchase.completed_at or timezone.now(),
            grade=completion_grade(final_score),
            final_score=final_score,
            total_hours=round(Decimal(course.total_duration) / 3600, 1),
            total_lessons=course.total_lessons,
            verification_url=f"{settings.FRONTEND_URL}/verify/{number}",
        )
        profile.increment("certificates_earned")

    logger.info("Issued course certificate %s to user %s", number, purchase.user_id)
    return certificate
