"""
Cache invalidation signals
Drop cached health and dashboard numbers when the underlying rows change
"""
from django.db import transaction
from django.db.models.signals import post_save, post_delete
from django.dispatch import receiver
import logging
import threading
from contextlib import contextmanager

from .cache_utils import invalidate_report_caches

logger = logging.getLogger(__name__)

# Thread-local storage to track signal suspension
_thread_locals = threading.local()

WATCHED_MODELS = {
    'purchasing.purchaseorder',
    'purchasing.purchaseorderitem',
    'purchasing.transaction',
    'inventory.inventorymovement',
    'catalog.product',
    'core.ordermanager',
}


@contextmanager
def suspend_cache_signals():
    """
    Context manager to temporarily suspend cache invalidation signals.
    Useful for bulk repairs to prevent excessive cache clearing.
    Caches are invalidated once, when the surrounding transaction commits.
    """
    previous = is_suspended()
    try:
        _thread_locals.suspended = True
        yield
    finally:
        _thread_locals.suspended = previous
        if not previous:
            transaction.on_commit(invalidate_report_caches)


def is_suspended():
    return getattr(_thread_locals, 'suspended', False)


def _is_watched(sender):
    return sender._meta.label_lower in WATCHED_MODELS


@receiver(post_save)
def invalidate_on_save(sender, **kwargs):
    if is_suspended() or not _is_watched(sender):
        return
    logger.debug(f"Invalidating report caches after save of {sender._meta.label}")
    transaction.on_commit(invalidate_report_caches)


@receiver(post_delete)
def invalidate_on_delete(sender, **kwargs):
    if is_suspended() or not _is_watched(sender):
        return
    logger.debug(f"Invalidating report caches after delete of {sender._meta.label}")
    transaction.on_commit(invalidate_report_caches)
