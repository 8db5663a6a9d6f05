from rest_framework import serializers
from backend.core.serializers import UserSummarySerializer
from backend.companies.models import Company
from .models import MoneyTransaction


class CompanySummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = Company
        fields = ['id', 'name', 'balance']


class MoneyTransactionSerializer(serializers.ModelSerializer):
    """Read shape of a transaction with its company and author resolved"""
    companyId = serializers.IntegerField(source='company_id', read_only=True)
    company = CompanySummarySerializer(read_only=True)
    orderNumber = serializers.CharField(source='order_number', read_only=True)
    createdById = serializers.IntegerField(source='created_by_id', read_only=True)
    createdBy = UserSummarySerializer(source='created_by', read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)

    class Meta:
        model = MoneyTransaction
        fields = [
            'id', 'amount', 'type', 'description', 'orderNumber',
            'companyId', 'company', 'createdById', 'createdBy', 'createdAt',
        ]
        read_only_fields = fields


class MoneyTransactionCreateSerializer(serializers.Serializer):
    """
    Request shape for recording a transaction.

    Only presence is checked here; amount and type rules live in
    backend.ledger.services so every caller gets the same validation.
    """
    amount = serializers.JSONField()
    type = serializers.JSONField()
    companyId = serializers.CharField()
    description = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    orderNumber = serializers.CharField(required=False, allow_blank=True, allow_null=True)

    def to_internal_value(self, data):
        if not isinstance(data, dict):
            raise serializers.ValidationError({'non_field_errors': ['Invalid request body']})
        missing = [key for key in ('amount', 'type', 'companyId') if data.get(key) in (None, '')]
        if missing:
            raise serializers.ValidationError({'non_field_errors': ['Amount, type and company are required']})
        return super().to_internal_value(data)


class MoneyTransactionUpdateSerializer(serializers.Serializer):
    """Request shape for metadata edits; maps API names onto model fields"""
    FIELD_MAP = {
        'description': 'description',
        'orderNumber': 'order_number',
        'order_number': 'order_number',
        'type': 'type',
        'amount': 'amount',
        'companyId': 'companyId',
        'company': 'company',
    }

    def to_internal_value(self, data):
        if not isinstance(data, dict):
            raise serializers.ValidationError({'non_field_errors': ['Invalid request body']})
        # Unknown keys pass through so the service can reject them explicitly
        return {self.FIELD_MAP.get(key, key): value for key, value in data.items()}


class LedgerSummarySerializer(serializers.Serializer):
    total_credit = serializers.DecimalField(max_digits=None, decimal_places=2)
    total_debit = serializers.DecimalField(max_digits=None, decimal_places=2)
    net = serializers.DecimalField(max_digits=None, decimal_places=2)
    count = serializers.IntegerField()
