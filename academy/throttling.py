from rest_framework.throttling import UserRateThrottle

# ------------------------------------------------------------
# Rate limits for function views. Class-based views use
# ScopedRateThrottle with a `throttle_scope` attribute instead;
# all scopes are configured in REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"].
# ------------------------------------------------------------


class RefundRateThrottle(UserRateThrottle):
    scope = "refunds"


class AttemptStartRateThrottle(UserRateThrottle):
    scope = "certification_attempts"
