from django.core.management.base import BaseCommand

from signing.tasks import reconcile


class Command(BaseCommand):
    help = 'Complete fully signed pending requests and re-queue missing final artifacts'

    def add_arguments(self, parser):
        parser.add_argument(
            '--grace-seconds',
            type=int,
            default=None,
            help='Only re-queue requests completed longer ago than this (defaults to SIGNING_STUCK_GRACE_SECONDS)',
        )

    def handle(self, *args, **options):
        summary = reconcile(grace_seconds=options['grace_seconds'])
        self.stdout.write(self.style.SUCCESS(
            f"Checked {summary['checked']}, repaired {summary['repaired']}, "
            f"re-queued {summary['requeued']}, errors {summary['errors']}"
        ))
