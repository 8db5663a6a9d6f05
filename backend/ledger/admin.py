from django.contrib import admin
from .models import MoneyTransaction


@admin.register(MoneyTransaction)
class MoneyTransactionAdmin(admin.ModelAdmin):
    list_display = ['id', 'company', 'type', 'amount', 'description', 'order_number', 'created_by', 'created_at']
    list_filter = ['type', 'created_at', 'created_by']
    search_fields = ['company__name', 'description', 'order_number']
    readonly_fields = ['company', 'type', 'amount', 'created_by', 'created_at']
    ordering = ['-created_at']
    date_hierarchy = 'created_at'

    def has_add_permission(self, request):
        # Entries are created through backend.ledger.services only
        return False

    def has_delete_permission(self, request, obj=None):
        return False
