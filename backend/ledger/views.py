from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
import logging

from backend.core.auth import ActorContext
from backend.core.exceptions import ValidationError, NotFoundError
from .filters import MoneyTransactionFilter
from .models import MoneyTransaction
from .serializers import (
    MoneyTransactionSerializer, MoneyTransactionCreateSerializer,
    MoneyTransactionUpdateSerializer, LedgerSummarySerializer,
)
from . import services

logger = logging.getLogger(__name__)


def _transaction_queryset():
    return MoneyTransaction.objects.select_related('company', 'created_by')


def _filtered_transactions(request):
    filterset = MoneyTransactionFilter(request.query_params, queryset=_transaction_queryset())
    if not filterset.is_valid():
        field, messages = next(iter(filterset.errors.items()))
        raise ValidationError(f"{field}: {messages[0]}")
    return filterset.qs


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def transaction_list_create(request):
    """List transactions (filterable by companyId/type) or record a new one"""
    if request.method == 'GET':
        queryset = _filtered_transactions(request).order_by('-created_at', '-id')
        serializer = MoneyTransactionSerializer(queryset, many=True)
        return Response({'transactions': serializer.data})

    actor = ActorContext.from_request(request)
    serializer = MoneyTransactionCreateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    result = services.record_transaction(
        company_id=data['companyId'],
        amount=data['amount'],
        txn_type=data['type'],
        actor=actor,
        description=data.get('description'),
        order_number=data.get('orderNumber'),
    )
    txn = _transaction_queryset().get(pk=result.transaction.pk)
    label = 'Credit' if txn.type == MoneyTransaction.CREDIT else 'Debit'
    return Response({
        'transaction': MoneyTransactionSerializer(txn).data,
        'newBalance': str(result.new_balance),
        'message': f"{label} of {txn.amount} recorded successfully",
    }, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'PATCH'])
@permission_classes([IsAuthenticated])
def transaction_detail(request, pk):
    """Retrieve a transaction or update its metadata (amount and company are immutable)"""
    if request.method == 'GET':
        txn = _transaction_queryset().filter(pk=pk).first()
        if txn is None:
            raise NotFoundError('Transaction not found')
        return Response({'transaction': MoneyTransactionSerializer(txn).data})

    serializer = MoneyTransactionUpdateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    services.update_transaction_metadata(pk, serializer.validated_data)
    txn = _transaction_queryset().get(pk=pk)
    return Response({'transaction': MoneyTransactionSerializer(txn).data})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def transaction_summary(request):
    """Totals of credits, debits and net over the filtered transactions"""
    totals = services.ledger_totals(_filtered_transactions(request))
    return Response(LedgerSummarySerializer(totals).data)
