import django_filters
from django.db.models import Q
from .models import MoneyTransaction


class MoneyTransactionFilter(django_filters.FilterSet):
    """
    Query filters for the transaction list.

    `companyId` and `orderNumber` keep the camelCase names the dashboard
    sends; `company` is accepted as an alias.
    """
    companyId = django_filters.NumberFilter(field_name='company_id', lookup_expr='exact')
    company = django_filters.NumberFilter(field_name='company_id', lookup_expr='exact')
    type = django_filters.ChoiceFilter(choices=MoneyTransaction.TYPE_CHOICES)
    orderNumber = django_filters.CharFilter(field_name='order_number', lookup_expr='iexact')
    date_from = django_filters.DateFilter(field_name='created_at', lookup_expr='date__gte')
    date_to = django_filters.DateFilter(field_name='created_at', lookup_expr='date__lte')
    search = django_filters.CharFilter(method='filter_search', label='Search')

    class Meta:
        model = MoneyTransaction
        fields = ['companyId', 'company', 'type', 'orderNumber', 'date_from', 'date_to', 'search']

    def filter_search(self, queryset, name, value):
        value = (value or '').strip()
        if not value:
            return queryset
        return queryset.filter(
            Q(description__icontains=value) |
            Q(order_number__icontains=value) |
            Q(company__name__icontains=value)
        )
