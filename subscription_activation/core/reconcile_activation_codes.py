# subscription_activation/core/reconcile_activation_codes.py

"""Repair codes left unused after their subscription was resumed.

Redemption marks a code used only after Seal confirmed the resume. If the
store write fails at that point the customer is active but the code still
reads ``unused``. This job looks for exactly that state and finishes the
transition through the store's compare-and-set, so running it twice is safe.
"""

import argparse
import asyncio
import logging
from dataclasses import dataclass, field
from typing import List

from subscription_activation.core.config import get_settings
from subscription_activation.core.logging_setup import configure_logging
from subscription_activation.models.activation_record import ActivationFilters, ActivationStatus, CompareAndSetResult
from subscription_activation.services.errors import PersistenceFailed, UpstreamCallFailed
from subscription_activation.services.record_store import RecordStore, build_record_store, iter_records
from subscription_activation.services.subscription_control import SubscriptionControl, build_subscription_control

logger = logging.getLogger(__name__)

ACTIVE_STATUS = "ACTIVE"


@dataclass
class ReconcileReport:
    checked: int = 0
    repaired: List[str] = field(default_factory=list)
    skipped_unpaused: int = 0
    errors: int = 0


async def reconcile_activation_codes(
    store: RecordStore,
    control: SubscriptionControl,
    *,
    dry_run: bool = False,
) -> ReconcileReport:
    report = ReconcileReport()
    # Collect first: repairing while paging through a status filter shifts the pages.
    candidates = [
        record async for record in iter_records(store, ActivationFilters(status=ActivationStatus.UNUSED))
    ]
    for record in candidates:
        if not record.paused:
            # Never paused, so an active subscription says nothing about redemption.
            report.skipped_unpaused += 1
            continue

        report.checked += 1
        try:
            status = await control.fetch_status(record.subscription_id)
        except UpstreamCallFailed as exc:
            logger.warning("Could not read Seal status for %s: %s", record.subscription_id, exc)
            report.errors += 1
            continue
        if status != ACTIVE_STATUS:
            continue

        if dry_run:
            logger.info("Would mark code %s used (subscription %s is active)", record.code, record.subscription_id)
            report.repaired.append(record.code)
            continue

        try:
            outcome = await store.compare_and_set_used(record.code, record.subscription_id)
        except PersistenceFailed as exc:
            logger.error("Could not mark code %s used: %s", record.code, exc)
            report.errors += 1
            continue
        if outcome is CompareAndSetResult.SUCCESS:
            logger.info("Marked code %s used (subscription %s is active)", record.code, record.subscription_id)
            report.repaired.append(record.code)
    return report


async def main(dry_run: bool = False):
    settings = get_settings()
    configure_logging(settings.log_level)
    store = build_record_store(settings)
    control = build_subscription_control(settings)
    try:
        report = await reconcile_activation_codes(store, control, dry_run=dry_run)
    finally:
        await control.close()
        await store.close()
    verb = "would repair" if dry_run else "repaired"
    print(
        f"Checked {report.checked} paused unused codes, {verb} {len(report.repaired)}, "
        f"skipped {report.skipped_unpaused} never paused, {report.errors} errors"
    )


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--dry-run", action="store_true", help="only report codes that would be marked used")
    args = parser.parse_args()
    asyncio.run(main(dry_run=args.dry_run))
