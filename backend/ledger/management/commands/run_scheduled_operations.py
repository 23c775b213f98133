from django.core.management.base import BaseCommand, CommandError

from ledger.models import Workspace
from ledger.services.scheduled_operation_service import ScheduledOperationService
from ledger.utils.date_utils import parse_date


class Command(BaseCommand):
    help = 'Post operations for every active schedule that is due'

    def add_arguments(self, parser):
        parser.add_argument(
            '--date',
            help='Run as of this date (YYYY-MM-DD), defaults to today',
        )
        parser.add_argument(
            '--workspace',
            type=int,
            help='Only run schedules of this workspace ID',
        )

    def handle(self, *args, **options):
        today = None
        if options.get('date'):
            today = parse_date(options['date'])
            if today is None:
                raise CommandError(f"Invalid date: {options['date']}")

        workspace = None
        if options.get('workspace'):
            try:
                workspace = Workspace.objects.get(pk=options['workspace'])
            except Workspace.DoesNotExist:
                raise CommandError(f"Workspace {options['workspace']} does not exist")

        result = ScheduledOperationService.run_due(today=today, workspace=workspace)

        self.stdout.write(f"Processed {len(result['processed'])} schedules")
        self.stdout.write(
            self.style.SUCCESS(f"✅ Posted {result['posted']} operations")
        )
        for schedule_id in result['failed']:
            self.stdout.write(
                self.style.ERROR(f"❌ FAILED: schedule {schedule_id}")
            )
