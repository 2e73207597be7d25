import logging
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from procurement.core.utils import parse_bool
from .services import get_system_health, get_dashboard_stats, get_recent_updates, IntegrityChecker

logger = logging.getLogger(__name__)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def system_health(request):
    """Order and installment counters with anomaly count"""
    refresh = parse_bool(request.query_params.get('refresh'))
    return Response(get_system_health(refresh=refresh))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def dashboard_stats(request):
    """Dashboard statistics"""
    refresh = parse_bool(request.query_params.get('refresh'))
    return Response(get_dashboard_stats(refresh=refresh))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def recent_updates(request):
    """Recently updated products"""
    try:
        limit = int(request.query_params.get('limit', 10))
    except ValueError:
        return Response({'error': 'limit must be an integer'}, status=status.HTTP_400_BAD_REQUEST)
    limit = max(1, min(limit, 100))
    return Response(get_recent_updates(limit=limit))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def integrity_check(request):
    """
    Run data integrity checks

    Query params:
        category: comma separated categories (default: all)
        include_samples: include sample rows (default: true)
        max_samples: rows per sample (default: 5)
    """
    category_param = request.query_params.get('category', '')
    categories = [c.strip() for c in category_param.split(',') if c.strip()]
    include_samples = parse_bool(request.query_params.get('include_samples'), default=True)
    try:
        max_samples = int(request.query_params.get('max_samples', 5))
    except ValueError:
        return Response({'error': 'max_samples must be an integer'}, status=status.HTTP_400_BAD_REQUEST)

    try:
        checker = IntegrityChecker(
            categories=categories or None,
            include_sample_data=include_samples,
            max_sample_records=max(1, min(max_samples, 50)),
        )
    except ValueError as e:
        return Response({'error': str(e), 'code': 'VALIDATION_FAILED'}, status=status.HTTP_400_BAD_REQUEST)

    summary, results = checker.run()
    return Response({'summary': summary, 'results': results})
