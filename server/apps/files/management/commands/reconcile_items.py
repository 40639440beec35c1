"""Management command to prune items whose stored content has vanished."""

import logging
from typing import Any

from django.core.management.base import BaseCommand

from server.apps.files.logic.file_operations import get_hierarchy_manager
from server.apps.files.models import Item

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Remove metadata of files that no longer exist in storage."""

    help = 'Prune orphaned file items (content missing from storage)'

    def add_arguments(self, parser: Any) -> None:
        """Add command line arguments.

        Args:
            parser: Argument parser.
        """
        parser.add_argument(
            '--user',
            type=int,
            help='Only reconcile items of this user ID',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be pruned without pruning',
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the reconcile command.

        Args:
            args: Positional arguments (unused).
            options: Command options.
        """
        dry_run = options['dry_run']
        user_ids = self._user_ids(options['user'])
        manager = get_hierarchy_manager()

        count = 0
        for user_id in user_ids:
            orphaned = manager.reconcile(user_id, dry_run=dry_run)
            for item_id in orphaned:
                self.stdout.write(
                    f'{"Would prune" if dry_run else "Pruned"}: '
                    f'item {item_id} (user: {user_id})',
                )
            count += len(orphaned)

        if dry_run:
            self.stdout.write(
                self.style.SUCCESS(f'Would prune {count} orphaned items'),
            )
        else:
            logger.info('Reconcile finished: %d orphaned items pruned', count)
            self.stdout.write(
                self.style.SUCCESS(f'Pruned {count} orphaned items'),
            )

    def _user_ids(self, user_id: int | None) -> list[int]:
        if user_id is not None:
            return [user_id]
        owners = Item.objects.order_by().values_list('user_id', flat=True)
        return sorted(set(owners.distinct()))
