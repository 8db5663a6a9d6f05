from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django.db.models import Count
import logging

from backend.core.auth import ActorContext
from backend.core.exceptions import NotFoundError
from backend.core.model_cache import (
    get_company_cache_key, get_company_list_cache_key,
    get_cached_company, cache_company_data,
    get_cached_company_list, cache_company_list,
)
from backend.ledger.services import recompute_balance
from .models import Company
from .serializers import (
    CompanySerializer, CompanyDetailSerializer,
    CompanyCreateSerializer, CompanyUpdateSerializer,
)
from . import services

logger = logging.getLogger(__name__)


def _get_company(pk):
    company = Company.objects.annotate(transaction_count=Count('transactions')).filter(pk=pk).first()
    if company is None:
        raise NotFoundError('Company not found')
    return company


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def company_list_create(request):
    """List all companies or create a new company"""
    if request.method == 'GET':
        search = (request.query_params.get('search') or '').strip()

        # Key is taken before the query so a concurrent invalidation wins
        cache_key = get_company_list_cache_key(search)
        cached_data = get_cached_company_list(cache_key)
        if cached_data is not None:
            return Response(cached_data)

        queryset = Company.objects.annotate(transaction_count=Count('transactions')).order_by('-created_at', '-id')
        if search:
            queryset = queryset.filter(name__icontains=search)
        response_data = {'companies': CompanySerializer(queryset, many=True).data}
        cache_company_list(cache_key, response_data)
        return Response(response_data)

    actor = ActorContext.from_request(request)
    serializer = CompanyCreateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    company = services.create_company(
        name=serializer.validated_data['name'],
        actor=actor,
        opening_balance=serializer.validated_data.get('balance'),
    )
    return Response({'company': CompanySerializer(_get_company(company.pk)).data}, status=status.HTTP_201_CREATED)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def company_detail(request, pk):
    """Retrieve, rename or delete a company"""
    if request.method == 'GET':
        cache_key = get_company_cache_key(pk)
        cached_data = get_cached_company(cache_key)
        if cached_data is not None:
            return Response(cached_data)

        response_data = {'company': CompanyDetailSerializer(_get_company(pk)).data}
        cache_company_data(cache_key, response_data)
        return Response(response_data)

    company = _get_company(pk)
    if request.method in ('PUT', 'PATCH'):
        serializer = CompanyUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        services.rename_company(company, serializer.validated_data['name'])
        return Response({'company': CompanySerializer(_get_company(pk)).data})

    # DELETE cascades to the company's transactions
    company.delete()
    logger.info(f"Deleted company {company.name} (ID: {pk})")
    return Response({'message': 'Company deleted successfully'})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def company_reconcile(request, pk):
    """Compare the cached balance with the ledger total (read-only)"""
    report = recompute_balance(pk)
    return Response(report.as_dict())
