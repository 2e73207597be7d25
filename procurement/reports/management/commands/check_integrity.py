"""
Django management command to run the data integrity checks
"""
import json

from django.core.management.base import BaseCommand
from django.core.serializers.json import DjangoJSONEncoder

from procurement.reports.services import IntegrityChecker


class Command(BaseCommand):
    help = 'Check orders, installments, stock and references for inconsistencies'

    def add_arguments(self, parser):
        parser.add_argument(
            '--category',
            action='append',
            choices=IntegrityChecker.CATEGORIES,
            help='Category to check; repeat for several (default: all)',
        )
        parser.add_argument(
            '--json',
            action='store_true',
            help='Print summary and results as JSON',
        )
        parser.add_argument(
            '--no-samples',
            action='store_true',
            help='Leave sample rows out of the results',
        )

    def handle(self, *args, **options):
        checker = IntegrityChecker(
            categories=options.get('category'),
            include_sample_data=not options.get('no_samples', False),
        )
        summary, results = checker.run()

        if options.get('json'):
            self.stdout.write(json.dumps(
                {'summary': summary, 'results': results},
                cls=DjangoJSONEncoder, indent=2, ensure_ascii=False,
            ))
            return

        self.stdout.write("=" * 80)
        self.stdout.write(self.style.SUCCESS("DATA INTEGRITY CHECK"))
        self.stdout.write("=" * 80)

        styles = {
            'critical': self.style.ERROR,
            'warning': self.style.WARNING,
            'info': self.style.NOTICE,
            'success': self.style.SUCCESS,
        }
        for result in results:
            style = styles[result['severity']]
            self.stdout.write(style(f"[{result['severity'].upper()}] {result['category']}: {result['title']}"))
            self.stdout.write(f"  {result['description']}")
            if result['affected_records']:
                self.stdout.write(f"  Affected records: {result['affected_records']}")
            for row in result['sample_data'] or []:
                self.stdout.write(f"    {json.dumps(row, cls=DjangoJSONEncoder, ensure_ascii=False)}")
            for action in result['suggested_actions']:
                self.stdout.write(f"  -> {action}")
            self.stdout.write("")

        self.stdout.write("=" * 80)
        self.stdout.write(
            f"Checks: {summary['total_checks']}  "
            f"Critical: {summary['critical_issues']}  "
            f"Warning: {summary['warning_issues']}  "
            f"Info: {summary['info_issues']}  "
            f"OK: {summary['success_checks']}  "
            f"({summary['execution_time_ms']}ms)"
        )
        status_style = styles['success'] if summary['overall_status'] == 'healthy' else (
            styles['critical'] if summary['overall_status'] == 'critical' else styles['warning']
        )
        self.stdout.write(status_style(f"Overall status: {summary['overall_status']}"))
