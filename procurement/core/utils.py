"""Request helpers and audit logging"""
import logging

from django.db import DatabaseError, transaction

from .models import AuditLog

logger = logging.getLogger(__name__)


def get_client_ip(request):
    """Client address, preferring the first X-Forwarded-For hop"""
    meta = getattr(request, 'META', None)
    if not meta:
        return None
    forwarded = meta.get('HTTP_X_FORWARDED_FOR')
    if forwarded:
        return forwarded.split(',')[0].strip() or None
    return meta.get('REMOTE_ADDR') or None


def create_audit_log(request=None, action=None, model_name=None, object_id=None,
                     changes=None, user=None, object_name=None, object_reference=None):
    """
    Record who did what to which object.

    ``user`` defaults to ``request.user``; anonymous users are stored as
    NULL. ``action``, ``model_name`` and ``object_id`` are required, and the
    entry is skipped with a warning when one is missing.

    The insert runs in its own savepoint so a failing audit row never
    aborts the caller's transaction. Returns the entry, or None when
    nothing was written.
    """
    if not action or not model_name or object_id in (None, ''):
        logger.warning(
            f"Audit log skipped: missing required fields "
            f"(action={action}, model_name={model_name}, object_id={object_id})"
        )
        return None

    actor = user if user is not None else getattr(request, 'user', None)
    if actor is not None and not actor.is_authenticated:
        actor = None

    try:
        with transaction.atomic():
            return AuditLog.objects.create(
                user=actor,
                action=action,
                model_name=model_name,
                object_id=str(object_id),
                object_name=object_name,
                object_reference=object_reference,
                changes=changes or {},
                ip_address=get_client_ip(request),
            )
    except DatabaseError:
        logger.exception(f"Failed to write audit log for {model_name} {object_id} ({action})")
        return None


def parse_bool(value, default=False):
    """Interpret query/body flags such as ?force=true"""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')
