"""
Cache invalidation signals
Automatically invalidate cached company data when companies or their
transactions change
"""
from django.db import transaction
from django.db.models.signals import post_save, post_delete
from django.dispatch import receiver
import logging
import threading
from contextlib import contextmanager

from .model_cache import invalidate_company_cache

logger = logging.getLogger(__name__)

# Thread-local storage to track signal suspension
_thread_locals = threading.local()


@contextmanager
def suspend_cache_signals():
    """
    Temporarily suspend cache invalidation signals for bulk operations.
    Invalidate manually after the block.
    """
    try:
        _thread_locals.suspended = True
        yield
    finally:
        _thread_locals.suspended = False


def is_suspended():
    return getattr(_thread_locals, 'suspended', False)


def _company_id_for(instance):
    model_name = instance.__class__.__name__
    if model_name == 'Company':
        return instance.pk
    if model_name == 'MoneyTransaction':
        return instance.company_id
    return None


@receiver([post_save, post_delete])
def invalidate_company_display_cache(sender, instance, **kwargs):
    """Invalidate company cache when a company or one of its transactions changes"""
    if is_suspended():
        return
    if sender.__name__ not in ('Company', 'MoneyTransaction'):
        return

    company_id = _company_id_for(instance)

    # Invalidate after commit so a concurrent reader cannot re-cache the
    # pre-commit row
    transaction.on_commit(lambda: invalidate_company_cache(company_id))
