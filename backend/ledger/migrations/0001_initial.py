# Generated manually
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('companies', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='MoneyTransaction',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('type', models.CharField(choices=[('credit', 'Credit'), ('debit', 'Debit')], max_length=10)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=14)),
                ('description', models.TextField(blank=True)),
                ('order_number', models.CharField(blank=True, max_length=100)),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('company', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='transactions', to='companies.company')),
                ('created_by', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='money_transactions', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'money_transactions',
                'ordering': ['-created_at', '-id'],
            },
        ),
        migrations.AddIndex(
            model_name='moneytransaction',
            index=models.Index(fields=['company', 'created_at'], name='money_txn_company_created_idx'),
        ),
        migrations.AddIndex(
            model_name='moneytransaction',
            index=models.Index(fields=['type'], name='money_txn_type_idx'),
        ),
        migrations.AddConstraint(
            model_name='moneytransaction',
            constraint=models.CheckConstraint(condition=models.Q(amount__gt=0), name='money_transaction_amount_positive'),
        ),
        migrations.AddConstraint(
            model_name='moneytransaction',
            constraint=models.CheckConstraint(condition=models.Q(type__in=['credit', 'debit']), name='money_transaction_type_valid'),
        ),
    ]
