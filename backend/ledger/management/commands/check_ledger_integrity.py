from django.core.management.base import BaseCommand
from django.db import transaction

from ledger.models import Operation, Workspace
from ledger.services.debt_service import DebtService
from ledger.services.transfer_service import TransferService
from ledger.utils.currency_utils import quantize_money


class Command(BaseCommand):
    help = 'Check transfer pairing and debt application totals across workspaces'

    def add_arguments(self, parser):
        parser.add_argument(
            '--fix',
            action='store_true',
            help='Delete transfer groups left with a single leg',
        )
        parser.add_argument(
            '--workspace',
            type=int,
            help='Only check this workspace ID',
        )

    def handle(self, *args, **options):
        workspaces = Workspace.objects.all()
        if options.get('workspace'):
            workspaces = workspaces.filter(pk=options['workspace'])

        self.stdout.write(f"Checking {workspaces.count()} workspaces")

        problem_count = 0
        for workspace in workspaces:
            broken = TransferService.broken_groups(workspace)
            for group_id, violations in broken.items():
                problem_count += 1
                self.stdout.write(
                    self.style.ERROR(f"❌ TRANSFER {group_id}: {'; '.join(violations)}")
                )

                if options['fix']:
                    legs = Operation.objects.filter(workspace=workspace, transfer_group_id=group_id)
                    if legs.count() == 1:
                        with transaction.atomic():
                            legs.delete()
                        self.stdout.write(
                            self.style.WARNING("   ↳ Fixed: removed orphan leg")
                        )

            for debt in DebtService.debts_with_balance(workspace):
                if debt.remaining_amount < 0:
                    problem_count += 1
                    self.stdout.write(
                        self.style.ERROR(
                            f"❌ DEBT {debt.id} ({debt.title}): over-applied by {quantize_money(-debt.remaining_amount)}"
                        )
                    )

        # Summary
        if problem_count:
            self.stdout.write(
                self.style.WARNING(f"Found {problem_count} integrity problems")
            )
        else:
            self.stdout.write(self.style.SUCCESS("✅ Ledger is consistent"))
