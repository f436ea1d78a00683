"""
Django settings for the academy backend - Production Ready
"""

import os
import dj_database_url
from pathlib import Path
from datetime import timedelta

# Load .env for development
from dotenv import load_dotenv

load_dotenv()

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.environ.get(
    "SECRET_KEY", "django-insecure-7d1m3q!o0l4w^c9x$z-academy-dev-key-change-me"
)

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = os.environ.get("DEBUG", "True").lower() == "true"

ALLOWED_HOSTS = os.environ.get("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",")

# Application definition
INSTALLED_APPS = [
    "jazzmin",
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "django_extensions",
    # Third Party Apps
    "corsheaders",
    "rest_framework",
    "rest_framework_simplejwt",
    "rest_framework_simplejwt.token_blacklist",
    # Local Apps
    "academy.apps.AcademyConfig",
    # Stripe App
    "djstripe",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "whitenoise.middleware.WhiteNoiseMiddleware",
    "corsheaders.middleware.CorsMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

CORS_ALLOWED_ORIGINS = os.environ.get(
    "CORS_ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:3000"
).split(",")
CORS_ALLOW_CREDENTIALS = True
CORS_ALLOW_METHODS = [
    "DELETE",
    "GET",
    "OPTIONS",
    "PATCH",
    "POST",
    "PUT",
]
CORS_ALLOW_HEADERS = [
    "accept",
    "accept-encoding",
    "authorization",
    "content-type",
    "dnt",
    "origin",
    "user-agent",
    "x-csrftoken",
    "x-requested-with",
    "cache-control",
]
CORS_ALLOWED_ORIGIN_REGEXES = [
    r"^http://localhost:(3000|517[0-9])$",
    r"^http://127\.0\.0\.1:(3000|517[0-9])$",
]

ROOT_URLCONF = "backend.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "backend.wsgi.application"

# Database: PostgreSQL in production, SQLite for development
if os.environ.get("DATABASE_URL"):
    DATABASES = {"default": dj_database_url.parse(os.environ.get("DATABASE_URL"))}
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

# Cache: holds wallet login nonces and token prices
if os.environ.get("REDIS_URL"):
    CACHES = {
        "default": {
            "BACKEND": "django_redis.cache.RedisCache",
            "LOCATION": os.environ.get("REDIS_URL"),
            "OPTIONS": {
                "CLIENT_CLASS": "django_redis.client.DefaultClient",
                "CONNECTION_POOL_KWARGS": {
                    "max_connections": 20,
                    "retry_on_timeout": True,
                },
            },
        }
    }
    SESSION_ENGINE = "django.contrib.sessions.backends.cache"
    SESSION_CACHE_ALIAS = "default"
else:
    CACHES = {
        "default": {
            "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
            "LOCATION": "academy-cache",
        }
    }

# Password validation (admin accounts only, students sign in with wallets)
AUTH_PASSWORD_VALIDATORS = [
    {
        "NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"
    },
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

# Internationalization
LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

# Static files (CSS, JavaScript, Images)
STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"
STORAGES = {
    "default": {"BACKEND": "django.core.files.storage.FileSystemStorage"},
    "staticfiles": {
        "BACKEND": "whitenoise.storage.CompressedManifestStaticFilesStorage"
    },
}

if not DEBUG:
    SECURE_CONTENT_TYPE_NOSNIFF = True
    SECURE_HSTS_INCLUDE_SUBDOMAINS = True
    SECURE_HSTS_SECONDS = 31536000
    SECURE_REDIRECT_EXEMPT = []
    SECURE_SSL_REDIRECT = True
    SESSION_COOKIE_SECURE = True
    CSRF_COOKIE_SECURE = True

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# REST Framework Settings
REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": ("backend.custom_auth.JWTAuthentication",),
    "DEFAULT_PERMISSION_CLASSES": ("rest_framework.permissions.AllowAny",),
    "DEFAULT_THROTTLE_RATES": {
        "wallet_auth": os.environ.get("THROTTLE_WALLET_AUTH", "40/hour"),
        "purchases": os.environ.get("THROTTLE_PURCHASES", "30/hour"),
        "refunds": os.environ.get("THROTTLE_REFUNDS", "12/hour"),
        "certification_attempts": os.environ.get("THROTTLE_CERTIFICATION_ATTEMPTS", "30/hour"),
    },
}

# Simple JWT Settings
SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(
        minutes=int(os.environ.get("JWT_ACCESS_TOKEN_LIFETIME_MINUTES", "60"))
    ),
    "REFRESH_TOKEN_LIFETIME": timedelta(
        days=int(os.environ.get("JWT_REFRESH_TOKEN_LIFETIME_DAYS", "7"))
    ),
    "ROTATE_REFRESH_TOKENS": True,
    "BLACKLIST_AFTER_ROTATION": True,
    "UPDATE_LAST_LOGIN": True,
    "ALGORITHM": "HS256",
    "SIGNING_KEY": SECRET_KEY,
    "AUTH_HEADER_TYPES": ("Bearer",),
    "AUTH_HEADER_NAME": "HTTP_AUTHORIZATION",
    "USER_ID_FIELD": "id",
    "USER_ID_CLAIM": "user_id",
    "AUTH_TOKEN_CLASSES": ("rest_framework_simplejwt.tokens.AccessToken",),
    "TOKEN_TYPE_CLAIM": "token_type",
    "JTI_CLAIM": "jti",
}

# Auth cookies; secure cookies require HTTPS outside local development
AUTH_COOKIE_SECURE = os.environ.get("AUTH_COOKIE_SECURE", "True").lower() == "true"
AUTH_COOKIE_SAMESITE = os.environ.get("AUTH_COOKIE_SAMESITE", "None")

# Logging
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{asctime} {levelname} {name} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "verbose"},
    },
    "root": {"handlers": ["console"], "level": "WARNING"},
    "loggers": {
        "academy": {
            "handlers": ["console"],
            "level": os.environ.get("ACADEMY_LOG_LEVEL", "INFO"),
            "propagate": False,
        },
    },
}

# Frontend URL for redirects and certificate verification links
FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:5173")
SITE_NAME = os.environ.get("SITE_NAME", "Founder Academy")

# ---- Wallet authentication ----
WALLET_NONCE_TTL_SECONDS = int(os.environ.get("WALLET_NONCE_TTL_SECONDS", "300"))

# ---- Crypto payments and escrow ----
# "blockchain" verifies transactions on-chain, "dummy" skips the chain entirely
PAYMENT_MODE = os.environ.get("PAYMENT_MODE", "blockchain").lower()
COINGECKO_API_URL = os.environ.get(
    "COINGECKO_API_URL", "https://api.coingecko.com/api/v3"
)
TOKEN_PRICE_CACHE_SECONDS = int(os.environ.get("TOKEN_PRICE_CACHE_SECONDS", "60"))
ESCROW_LARGE_AMOUNT_THRESHOLD_USD = int(
    os.environ.get("ESCROW_LARGE_AMOUNT_THRESHOLD_USD", "1000")
)
ESCROW_RELEASE_BATCH_SIZE = int(os.environ.get("ESCROW_RELEASE_BATCH_SIZE", "20"))
ESCROW_RELEASE_LIMIT = int(os.environ.get("ESCROW_RELEASE_LIMIT", "100"))
ADMIN_SIGNATURE_MAX_AGE_SECONDS = int(
    os.environ.get("ADMIN_SIGNATURE_MAX_AGE_SECONDS", "300")
)
BLOCKCHAIN_RECEIPT_TIMEOUT_SECONDS = int(
    os.environ.get("BLOCKCHAIN_RECEIPT_TIMEOUT_SECONDS", "120")
)

# Operator wallet that signs escrow transactions
ACTIVE_NETWORK = os.environ.get("ACTIVE_NETWORK", "testnet")
AWS_SECRETS_ENABLED = os.environ.get("AWS_SECRETS_ENABLED", "False").lower() == "true"
AWS_REGION = os.environ.get("AWS_REGION", "us-east-1")
PAYMENT_WALLET_PRIVATE_KEY = os.environ.get("PAYMENT_WALLET_PRIVATE_KEY", "")

# ---- Video storage (S3 compatible) ----
VIDEO_STORAGE_BUCKET = os.environ.get("VIDEO_STORAGE_BUCKET", "academy-videos")
VIDEO_STORAGE_ENDPOINT_URL = os.environ.get("VIDEO_STORAGE_ENDPOINT_URL")
VIDEO_STORAGE_REGION = os.environ.get("VIDEO_STORAGE_REGION")
VIDEO_STORAGE_ACCESS_KEY_ID = os.environ.get("VIDEO_STORAGE_ACCESS_KEY_ID")
VIDEO_STORAGE_SECRET_ACCESS_KEY = os.environ.get("VIDEO_STORAGE_SECRET_ACCESS_KEY")
VIDEO_URL_EXPIRES_SECONDS = int(os.environ.get("VIDEO_URL_EXPIRES_SECONDS", "7200"))
VIDEO_SESSION_HOURS_STUDENT = int(os.environ.get("VIDEO_SESSION_HOURS_STUDENT", "4"))
VIDEO_SESSION_HOURS_INSTRUCTOR = int(
    os.environ.get("VIDEO_SESSION_HOURS_INSTRUCTOR", "8")
)

# ---- Certifications ----
CERTIFICATE_NUMBER_PREFIX = os.environ.get("CERTIFICATE_NUMBER_PREFIX", "FA")

JAZZMIN_SETTINGS = {
    "site_title": "Academy Admin",
    "site_header": "Academy Backend",
    "site_brand": "Academy",
    "welcome_sign": "Welcome to the academy administration",
    "copyright": "Academy Team",
    "topmenu_links": [
        {"name": "Home", "url": "admin:index", "permissions": ["auth.view_user"]},
        {"name": "Website", "url": FRONTEND_URL, "new_window": True},
    ],
    "usermenu_links": [
        {"name": "My profile", "url": "admin:auth_user_change", "id_field": "user.id"},
    ],
    "icons": {
        "auth": "fas fa-users-cog",
        "auth.user": "fas fa-user",
        "auth.Group": "fas fa-users",
        "academy": "fas fa-graduation-cap",
        "academy.Course": "fas fa-book-open",
        "academy.Purchase": "fas fa-receipt",
        "academy.PaymentToken": "fas fa-coins",
        "academy.ProfessionalCertification": "fas fa-certificate",
    },
    "show_ui_builder": False,
    "changeform_format": "horizontal_tabs",
    "changeform_format_overrides": {
        "auth.user": "collapsible",
    },
    "order_with_respect_to": [
        "auth",
        "academy",
    ],
}

JAZZMIN_UI_TWEAKS = {
    "brand_colour": "navbar-indigo",
    "accent": "accent-indigo",
    "navbar": "navbar-dark",
    "navbar_fixed": True,
    "sidebar_fixed": True,
    "sidebar": "sidebar-dark-indigo",
    "theme": "darkly",
}

# ---- Payments / Stripe / dj-stripe ----
# Stripe Checkout sells certificates and attempt resets; course purchases go
# through the on-chain escrow.
STRIPE_LIVE_MODE = os.environ.get("STRIPE_LIVE_MODE", "False").lower() == "true"

STRIPE_TEST_SECRET_KEY = os.environ.get("STRIPE_TEST_SECRET_KEY", "")  # sk_test_xxx
STRIPE_LIVE_SECRET_KEY = os.environ.get("STRIPE_LIVE_SECRET_KEY", "")  # sk_live_xxx

STRIPE_TEST_PUBLISHABLE_KEY = os.environ.get(
    "STRIPE_TEST_PUBLISHABLE_KEY", ""
)  # pk_test_xxx
STRIPE_LIVE_PUBLISHABLE_KEY = os.environ.get(
    "STRIPE_LIVE_PUBLISHABLE_KEY", ""
)  # pk_live_xxx

# Signing secret of the webhook endpoint configured in the Stripe Dashboard
DJSTRIPE_WEBHOOK_SECRET = os.environ.get("DJSTRIPE_WEBHOOK_SECRET", "")

DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "usd")

DJSTRIPE_STRIPE_API_VERSION = os.environ.get(
    "DJSTRIPE_STRIPE_API_VERSION", "2024-06-20"
)

# dj-stripe looks at STRIPE_SECRET_KEY for all API calls
STRIPE_SECRET_KEY = (
    STRIPE_LIVE_SECRET_KEY if STRIPE_LIVE_MODE else STRIPE_TEST_SECRET_KEY
)

DJSTRIPE_FOREIGN_KEY_TO_FIELD = "id"
