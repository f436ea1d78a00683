from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/academy/", include("academy.urls")),
    # Stripe webhooks land here and are stored as djstripe Events
    path("stripe/", include("djstripe.urls", namespace="djstripe")),
]
