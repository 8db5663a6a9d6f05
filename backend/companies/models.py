from django.db import models
from decimal import Decimal


class Company(models.Model):
    """
    A company holding a money balance.

    `balance` is a cached projection of the company's ledger (credits minus
    debits). Only backend.ledger.services writes it.
    """
    name = models.CharField(max_length=200, unique=True)
    balance = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name

    class Meta:
        db_table = 'companies'
        ordering = ['-created_at', '-id']
        verbose_name_plural = 'companies'
        constraints = [
            models.CheckConstraint(condition=models.Q(balance__gte=0), name='company_balance_non_negative'),
        ]
