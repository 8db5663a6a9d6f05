from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from backend.companies.models import Company
from backend.core.cache_signals import suspend_cache_signals
from backend.core.exceptions import APIError
from backend.core.model_cache import invalidate_company_cache
from backend.ledger.services import recompute_balance


class Command(BaseCommand):
    help = 'Checks that every company balance equals the total of its ledger, optionally repairing drift'

    def add_arguments(self, parser):
        parser.add_argument(
            '--company',
            type=int,
            help='Only check the company with this ID',
        )
        parser.add_argument(
            '--repair',
            action='store_true',
            help='Overwrite drifted cached balances with the ledger total',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='With --repair, show what would change and roll back',
        )

    def handle(self, *args, **options):
        repair = options['repair']
        dry_run = options['dry_run']
        if dry_run:
            self.stdout.write(self.style.WARNING("DRY RUN MODE: No changes will be saved."))

        company_ids = list(Company.objects.order_by('id').values_list('id', flat=True))
        if options['company'] is not None:
            if options['company'] not in company_ids:
                raise CommandError(f"Company {options['company']} does not exist")
            company_ids = [options['company']]

        self.stdout.write(f"Checking balances for {len(company_ids)} companies...")

        drifted = 0
        with suspend_cache_signals(), transaction.atomic():
            for company_id in company_ids:
                try:
                    report = recompute_balance(company_id, repair=repair)
                except APIError as e:
                    self.stdout.write(self.style.ERROR(f"  - Company {company_id}: {e.message}"))
                    drifted += 1
                    continue

                if report.in_sync:
                    self.stdout.write(f"  - {report.company_name} (ID: {company_id}): balance correct {report.ledger_balance}")
                    continue

                drifted += 1
                line = (
                    f"  - {report.company_name} (ID: {company_id}): cached {report.cached_balance}, "
                    f"ledger {report.ledger_balance}, drift {report.drift}"
                )
                if report.repaired:
                    self.stdout.write(self.style.SUCCESS(f"{line} -> repaired"))
                else:
                    self.stdout.write(self.style.NOTICE(line))

            if dry_run:
                self.stdout.write(self.style.WARNING("\nDry run complete. Rolling back changes."))
                transaction.set_rollback(True)

        if repair and not dry_run:
            for company_id in company_ids:
                invalidate_company_cache(company_id)

        if drifted:
            self.stdout.write(self.style.WARNING(f"\n{drifted} of {len(company_ids)} companies out of sync."))
        else:
            self.stdout.write(self.style.SUCCESS("\nAll balances match their ledgers."))
