from django.contrib import admin
from .models import Company


@admin.register(Company)
class CompanyAdmin(admin.ModelAdmin):
    list_display = ['name', 'balance', 'created_at', 'updated_at']
    search_fields = ['name']
    ordering = ['name']
    # Balance only moves through ledger transactions
    readonly_fields = ['balance', 'created_at', 'updated_at']
