"""
Hints for database errors surfaced to operators.

Repair commands and the connection check print these next to the raw
error so the person running them gets a first guess at the cause.
"""
from django.db import DatabaseError, IntegrityError, OperationalError, ProgrammingError

# PostgreSQL SQLSTATE codes seen in practice
PG_ERROR_HINTS = {
    '42883': 'Function does not exist or the argument signature does not match',
    '42501': 'Permission denied for this table or function',
    '42P01': 'Table does not exist; migrations may not have been applied',
    '23505': 'Unique constraint violated; a row with the same key already exists',
    '23503': 'Foreign key violated; the referenced row is missing',
    '23502': 'A required column was left empty',
    '40001': 'Serialization failure; another transaction changed the same rows, retry',
    '40P01': 'Deadlock detected; retry the operation',
    '28P01': 'Authentication failed; check DB_USER and DB_PASSWORD',
    '3D000': 'Database does not exist; check DB_NAME',
    '57014': 'Statement cancelled by timeout',
}

RETRYABLE_SQLSTATES = {'40001', '40P01', '57014'}


def get_error_code(exc):
    """Return the SQLSTATE carried by a database exception, if any"""
    for candidate in (exc, getattr(exc, '__cause__', None)):
        if candidate is None:
            continue
        code = getattr(candidate, 'pgcode', None) or getattr(candidate, 'sqlstate', None)
        if code:
            return str(code)
    return None


def describe_database_error(exc):
    """Best guess at what went wrong, for humans reading command output"""
    code = get_error_code(exc)
    if code and code in PG_ERROR_HINTS:
        return PG_ERROR_HINTS[code]

    message = str(exc).lower()
    if 'unique' in message:
        return PG_ERROR_HINTS['23505']
    if 'foreign key' in message:
        return PG_ERROR_HINTS['23503']
    if 'no such table' in message or 'does not exist' in message:
        return PG_ERROR_HINTS['42P01']
    if 'could not connect' in message or 'connection refused' in message:
        return 'Database server is unreachable; check DB_HOST and DB_PORT'
    if 'locked' in message:
        return 'Database is locked by another writer; retry the operation'

    if isinstance(exc, IntegrityError):
        return 'Data integrity rule violated'
    if isinstance(exc, OperationalError):
        return 'Database connection or operational failure'
    if isinstance(exc, ProgrammingError):
        return 'Query is invalid for the current schema'
    if isinstance(exc, DatabaseError):
        return 'Unknown database error'
    return 'Unknown error type'


def is_retryable_database_error(exc):
    code = get_error_code(exc)
    if code in RETRYABLE_SQLSTATES:
        return True
    return isinstance(exc, OperationalError)
