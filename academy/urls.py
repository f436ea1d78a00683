"""
Academy URL Configuration

Mounted under /api/academy/ by backend.urls. Each functional area keeps its
own pattern list and namespace.

URL Structure:
- auth/: wallet sign-in, token refresh, logout
- users/: profile, payment wallets, levels, achievements, instructor applications
- courses/: catalog, categories, instructor authoring, video playback
- payments/: tokens, quotes, purchases, refunds, learning progress
- learning/: notes, Q&A and reviews
- certifications/: catalog, tests, resets and certificates
- admin/: platform administration across all areas

Author: Academy Development Team
Version: 1.0.0
"""

from typing import List

from django.urls import URLPattern, include, path

from .certifications import views as certification_views
from .courses import views as course_views
from .learning import views as learning_views
from .payments import views as payment_views
from .users import views as user_views

app_name = "academy"

# --- Authentication ---

auth_urlpatterns: List[URLPattern] = [
    path("nonce/", user_views.WalletNonceView.as_view(), name="wallet-nonce"),
    path("verify/", user_views.WalletVerifyView.as_view(), name="wallet-verify"),
    path("refresh/", user_views.CustomTokenRefreshView.as_view(), name="token-refresh"),
    path("logout/", user_views.LogoutView.as_view(), name="logout"),
]

# --- Users ---

users_urlpatterns: List[URLPattern] = [
    path("me/", user_views.CurrentUserView.as_view(), name="me"),
    path("me/wallets/", user_views.PaymentWalletListCreateView.as_view(), name="payment-wallets"),
    path("me/wallets/<int:pk>/", user_views.PaymentWalletDeleteView.as_view(), name="payment-wallet-delete"),
    path("me/level/", user_views.get_level_progress, name="level-progress"),
    path("me/achievements/", user_views.get_achievements, name="achievements"),
    path("levels/", user_views.get_level_milestones, name="level-milestones"),
    path("instructor-application/", user_views.InstructorApplicationView.as_view(), name="instructor-application"),
    path("<str:username>/", user_views.PublicProfileView.as_view(), name="public-profile"),
]

# --- Courses ---

courses_urlpatterns: List[URLPattern] = [
    path("", course_views.CourseListCreateView.as_view(), name="course-list"),
    path("mine/", course_views.InstructorCourseListView.as_view(), name="instructor-courses"),
    path("mine/stats/", course_views.instructor_courses_with_stats, name="instructor-course-stats"),
    path("categories/", course_views.course_categories, name="course-categories"),
    path("instructor/<str:username>/", course_views.CoursesByInstructorView.as_view(), name="courses-by-instructor"),
    path("sections/<int:pk>/", course_views.SectionDetailView.as_view(), name="section-detail"),
    path("sections/<int:pk>/lessons/", course_views.LessonCreateView.as_view(), name="lesson-create"),
    path("lessons/<int:pk>/", course_views.LessonDetailView.as_view(), name="lesson-detail"),
    # Video playback
    path("<int:course_id>/video-session/", course_views.create_video_session, name="video-session-create"),
    path("video-session/invalidate/", course_views.invalidate_video_session, name="video-session-invalidate"),
    path("lessons/<int:lesson_id>/video/", course_views.get_lesson_video, name="lesson-video"),
    path("storage/sign/", course_views.sign_storage_key, name="storage-sign"),
    # Slug routes last so they do not shadow the fixed prefixes above
    path("<slug:slug>/", course_views.CourseDetailView.as_view(), name="course-detail"),
    path("<slug:slug>/publish/", course_views.publish_course, name="course-publish"),
    path("<slug:slug>/sections/", course_views.SectionCreateView.as_view(), name="section-create"),
]

# --- Payments ---

payments_urlpatterns: List[URLPattern] = [
    path("tokens/", payment_views.PaymentTokenListView.as_view(), name="token-list"),
    path("tokens/<int:token_id>/price/", payment_views.token_price, name="token-price"),
    path("calculate/", payment_views.calculate_payment, name="calculate-payment"),
    path("purchase/", payment_views.PurchaseView.as_view(), name="purchase"),
    path("refund/", payment_views.request_refund, name="refund"),
    path("purchases/", payment_views.MyPurchasesView.as_view(), name="my-purchases"),
    path("purchases/course/<int:course_id>/", payment_views.purchase_for_course, name="purchase-for-course"),
    path("purchases/<int:purchase_id>/complete-lesson/", payment_views.complete_lesson, name="complete-lesson"),
    path("my-learning/", payment_views.my_learning, name="my-learning"),
    path("stripe/config/", payment_views.StripeConfigView.as_view(), name="stripe-config"),
]

# --- Learning ---

learning_urlpatterns: List[URLPattern] = [
    path("lessons/<int:lesson_id>/notes/", learning_views.LessonNotesView.as_view(), name="lesson-notes"),
    path("notes/<int:pk>/", learning_views.NoteDetailView.as_view(), name="note-detail"),
    path("courses/<int:course_id>/questions/", learning_views.CourseQuestionsView.as_view(), name="course-questions"),
    path("questions/", learning_views.create_question, name="question-create"),
    path("questions/<int:pk>/", learning_views.QuestionDetailView.as_view(), name="question-detail"),
    path("questions/<int:pk>/reply/", learning_views.reply_to_question, name="question-reply"),
    path("courses/<int:course_id>/reviews/", learning_views.CourseReviewsView.as_view(), name="course-reviews"),
    path("reviews/<int:pk>/", learning_views.ReviewDetailView.as_view(), name="review-detail"),
    path("reviews/<int:pk>/vote/", learning_views.vote_review, name="review-vote"),
    path("reviews/<int:pk>/respond/", learning_views.respond_to_review, name="review-respond"),
]

# --- Certifications ---

certifications_urlpatterns: List[URLPattern] = [
    path("", certification_views.certification_catalog, name="catalog"),
    path("attempts/", certification_views.my_attempts, name="my-attempts"),
    path("attempts/<int:attempt_id>/", certification_views.attempt_detail, name="attempt-detail"),
    path("attempts/<int:attempt_id>/submit/", certification_views.submit_attempt, name="attempt-submit"),
    path("certificates/", certification_views.my_certificates, name="my-certificates"),
    path("certificates/eligible/", certification_views.eligible_certificates, name="eligible-certificates"),
    path("certificates/purchase/", certification_views.purchase_certificate, name="purchase-certificate"),
    path("certificates/courses/", certification_views.my_course_certificates, name="my-course-certificates"),
    path(
        "certificates/courses/<int:pk>/",
        certification_views.course_certificate_detail,
        name="course-certificate-detail",
    ),
    path("verify/<str:certificate_number>/", certification_views.verify_certificate, name="verify-certificate"),
    path("<int:certification_id>/start/", certification_views.start_attempt, name="attempt-start"),
    path("<int:certification_id>/reset/", certification_views.reset_attempts, name="attempt-reset"),
    path("<slug:slug>/", certification_views.certification_detail, name="detail"),
]

# --- Administration ---

admin_urlpatterns: List[URLPattern] = [
    # Users
    path("instructor-applications/", user_views.AdminApplicationListView.as_view(), name="instructor-applications"),
    path("instructor-applications/<int:pk>/approve/", user_views.approve_application, name="application-approve"),
    path("instructor-applications/<int:pk>/reject/", user_views.reject_application, name="application-reject"),
    path("instructor-applications/<int:pk>/review/", user_views.review_application, name="application-review"),
    # Courses
    path("courses/<slug:slug>/status/", course_views.admin_update_course_status, name="course-status"),
    # Payments
    path("tokens/", payment_views.AdminTokenListCreateView.as_view(), name="tokens"),
    path("tokens/<int:pk>/", payment_views.AdminTokenDetailView.as_view(), name="token-detail"),
    path("platform-settings/", payment_views.AdminPlatformSettingsView.as_view(), name="platform-settings"),
    path("instructor-fees/", payment_views.AdminInstructorFeeListView.as_view(), name="instructor-fees"),
    path("instructor-fees/<int:user_id>/", payment_views.AdminInstructorFeeView.as_view(), name="instructor-fee-detail"),
    path("escrows/", payment_views.admin_escrows, name="escrows"),
    path("escrows/<str:escrow_id>/release/", payment_views.admin_release_escrow, name="escrow-release"),
    path("escrows/<str:escrow_id>/refund/", payment_views.admin_refund_escrow, name="escrow-refund"),
    path("access/grant/", payment_views.admin_grant_access, name="access-grant"),
    path("access/remove/", payment_views.admin_remove_access, name="access-remove"),
    path("users/<int:user_id>/purchases/", payment_views.admin_user_purchases, name="user-purchases"),
    path("audit-logs/", payment_views.admin_audit_logs, name="audit-logs"),
    # Learning
    path("reviews/", learning_views.admin_reviews, name="reviews"),
    path("reviews/<int:pk>/", learning_views.admin_moderate_review, name="review-moderate"),
    # Certifications
    path("certifications/", certification_views.AdminCertificationListCreateView.as_view(), name="certifications"),
    path("certifications/stats/", certification_views.admin_certification_stats, name="certification-stats"),
    path("certifications/certificates/", certification_views.admin_certificates, name="certificates"),
    path(
        "certifications/certificates/<int:pk>/revoke/",
        certification_views.admin_revoke_certificate,
        name="certificate-revoke",
    ),
    path("certifications/<int:pk>/", certification_views.AdminCertificationDetailView.as_view(), name="certification-detail"),
    path("certifications/<int:pk>/status/", certification_views.admin_certification_status, name="certification-status"),
    path("certifications/<int:pk>/attempts/", certification_views.admin_certification_attempts, name="certification-attempts"),
]

urlpatterns: List[URLPattern] = [
    path("auth/", include((auth_urlpatterns, "auth"))),
    path("users/", include((users_urlpatterns, "users"))),
    path("courses/", include((courses_urlpatterns, "courses"))),
    path("payments/", include((payments_urlpatterns, "payments"))),
    path("learning/", include((learning_urlpatterns, "learning"))),
    path("certifications/", include((certifications_urlpatterns, "certifications"))),
    path("admin/", include((admin_urlpatterns, "admin"))),
]
