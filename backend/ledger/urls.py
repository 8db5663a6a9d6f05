from django.urls import path
from .views import transaction_list_create, transaction_detail, transaction_summary

urlpatterns = [
    path('transactions/', transaction_list_create, name='transaction-list-create'),
    path('transactions/summary/', transaction_summary, name='transaction-summary'),
    path('transactions/<int:pk>/', transaction_detail, name='transaction-detail'),
]
