from __future__ import annotations

from django.core.management.base import BaseCommand

from checkout.services import expire_unpaid_orders


class Command(BaseCommand):
    help = "Mark orders whose payment deadline passed as payment-expired (optionally cancel them and release stock)."

    def add_arguments(self, parser):
        parser.add_argument(
            "--cancel",
            action="store_true",
            help="Also cancel the expired orders and give their stock back.",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Only print how many orders would expire; do not change DB.",
        )

    def handle(self, *args, **options):
        dry_run: bool = bool(options.get("dry_run"))
        cancel: bool = bool(options.get("cancel"))

        ids = expire_unpaid_orders(cancel=cancel, dry_run=dry_run)
        if dry_run:
            self.stdout.write(self.style.WARNING(f"dry-run: would expire unpaid orders: {len(ids)}"))
            return

        verb = "Cancelled" if cancel else "Expired"
        self.stdout.write(self.style.SUCCESS(f"{verb} unpaid orders: {len(ids)}"))
