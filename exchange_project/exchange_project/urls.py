from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path("admin/", admin.site.urls),
    # JSON endpoints for the balance & settlement engine
    path("ledger/", include("ledger_core.urls")),
]
