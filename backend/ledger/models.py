from django.db import models
from django.utils import timezone
from backend.core.models import User
from backend.companies.models import Company


class MoneyTransaction(models.Model):
    """Money movement against a company; credits add to its balance, debits subtract"""
    CREDIT = 'credit'
    DEBIT = 'debit'
    TYPE_CHOICES = [
        (CREDIT, 'Credit'),
        (DEBIT, 'Debit'),
    ]

    company = models.ForeignKey(Company, on_delete=models.CASCADE, related_name='transactions')
    type = models.CharField(max_length=10, choices=TYPE_CHOICES)
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    description = models.TextField(blank=True)
    order_number = models.CharField(max_length=100, blank=True)
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, related_name='money_transactions')
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    def __str__(self):
        return f"{self.company.name} - {self.type} - {self.amount}"

    @property
    def signed_amount(self):
        return self.amount if self.type == self.CREDIT else -self.amount

    class Meta:
        db_table = 'money_transactions'
        ordering = ['-created_at', '-id']
        constraints = [
            models.CheckConstraint(condition=models.Q(amount__gt=0), name='money_transaction_amount_positive'),
            models.CheckConstraint(condition=models.Q(type__in=['credit', 'debit']), name='money_transaction_type_valid'),
        ]
        indexes = [
            models.Index(fields=['company', 'created_at'], name='money_txn_company_created_idx'),
            models.Index(fields=['type'], name='money_txn_type_idx'),
        ]
