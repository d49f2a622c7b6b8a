from __future__ import annotations

from django.core.management.base import BaseCommand

from api.errors import ServiceError
from payments.services.reconciliation import pending_link_order_ids, sync_payment_link


class Command(BaseCommand):
    help = "Poll the payment gateway for every unsettled payment link and reconcile orders."

    def add_arguments(self, parser):
        parser.add_argument("--limit", type=int, default=0)

    def handle(self, *args, **opts):
        limit = int(opts.get("limit") or 0)
        order_ids = pending_link_order_ids()
        if limit:
            order_ids = order_ids[:limit]

        synced = 0
        changed = 0
        failed = 0
        for order_id in order_ids:
            try:
                result = sync_payment_link(order_id=order_id)
            except ServiceError as e:
                failed += 1
                self.stderr.write(f"order {order_id}: {e.code} {e.message}")
                continue
            synced += 1
            if result.changed:
                changed += 1

        self.stdout.write(self.style.SUCCESS(f"Synced {synced} links ({changed} changed, {failed} failed)"))
