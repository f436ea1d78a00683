"""
Academy Users Views Package

Wallet authentication, the signed-in user's profile and payout wallets,
level progression, public profiles and the instructor application workflow.

Author: Academy Development Team
Version: 1.0.0
"""

from .auth_views import (
    CustomTokenRefreshView,
    LogoutView,
    WalletNonceView,
    WalletVerifyView,
)
from .profile_views import (
    CurrentUserView,
    PaymentWalletDeleteView,
    PaymentWalletListCreateView,
    PublicProfileView,
    get_achievements,
    get_level_milestones,
    get_level_progress,
)
from .application_views import (
    AdminApplicationListView,
    InstructorApplicationView,
    approve_application,
    reject_application,
    review_application,
)
