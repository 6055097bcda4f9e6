# subscription_activation/core/sync_activation_codes.py

import asyncio
import logging

from subscription_activation.core.config import get_settings
from subscription_activation.core.logging_setup import configure_logging
from subscription_activation.services.google_sheet import GoogleSheetRecordStore
from subscription_activation.services.record_store import RecordStore, build_record_store, iter_records

logger = logging.getLogger(__name__)

async def sync_activation_codes(source: RecordStore, sheet: RecordStore) -> int:
    """Mirror every record of ``source`` into the operators' Google Sheet."""
    # The sheet is a copy; the source store is authoritative.
    records = [record async for record in iter_records(source)]
    return await sheet.upsert_many(records)

async def main():
    settings = get_settings()
    configure_logging(settings.log_level)
    if settings.record_store == "sheets":
        logger.info("RECORD_STORE is already the Google Sheet, nothing to sync")
        return

    source = build_record_store(settings)
    sheet = GoogleSheetRecordStore.from_settings(settings)
    try:
        synced = await sync_activation_codes(source, sheet)
    finally:
        await source.close()
    print(f"Synced {synced} activation codes to Google Sheets")

if __name__ == "__main__":
    asyncio.run(main())
