from django.urls import path
from .views import company_list_create, company_detail, company_reconcile

urlpatterns = [
    path('companies/', company_list_create, name='company-list-create'),
    path('companies/<int:pk>/', company_detail, name='company-detail'),
    path('companies/<int:pk>/reconcile/', company_reconcile, name='company-reconcile'),
]
