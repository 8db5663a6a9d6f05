"""
URL configuration for the ERP backend.

All API routes are versioned under /api/v1/ and delegated to the apps.
"""
from django.contrib import admin
from django.urls import path, include

admin.site.site_header = "ERP Management Admin Panel"
admin.site.site_title = "ERP Management Admin Portal"
admin.site.index_title = "Companies and Ledger Administration"

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/v1/', include('backend.core.urls')),
    path('api/v1/', include('backend.companies.urls')),
    path('api/v1/', include('backend.ledger.urls')),
]
