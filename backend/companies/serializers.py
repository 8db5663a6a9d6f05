from rest_framework import serializers
from backend.ledger.serializers import MoneyTransactionSerializer
from .models import Company

RECENT_TRANSACTION_LIMIT = 10


class CompanySerializer(serializers.ModelSerializer):
    transactionCount = serializers.IntegerField(source='transaction_count', read_only=True, default=0)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)

    class Meta:
        model = Company
        fields = ['id', 'name', 'balance', 'transactionCount', 'createdAt', 'updatedAt']
        read_only_fields = ['balance']


class CompanyDetailSerializer(CompanySerializer):
    transactions = serializers.SerializerMethodField()

    class Meta(CompanySerializer.Meta):
        fields = CompanySerializer.Meta.fields + ['transactions']

    def get_transactions(self, obj):
        recent = obj.transactions.select_related('created_by').order_by('-created_at', '-id')[:RECENT_TRANSACTION_LIMIT]
        return MoneyTransactionSerializer(recent, many=True).data


class CompanyCreateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=200, error_messages={
        'required': 'Company name is required',
        'blank': 'Company name is required',
        'null': 'Company name is required',
    })
    balance = serializers.JSONField(required=False, allow_null=True)


class CompanyUpdateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=200, error_messages={
        'required': 'Company name is required',
        'blank': 'Company name is required',
        'null': 'Company name is required',
    })

    def to_internal_value(self, data):
        if isinstance(data, dict) and 'balance' in data:
            raise serializers.ValidationError({
                'non_field_errors': ['Balance can only be changed by recording a transaction'],
            })
        return super().to_internal_value(data)
