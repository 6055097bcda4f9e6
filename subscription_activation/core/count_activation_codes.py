# subscription_activation/core/count_activation_codes.py

import asyncio

from subscription_activation.core.config import get_settings
from subscription_activation.models.activation_record import ActivationTotals
from subscription_activation.services.record_store import RecordStore, build_record_store

async def count_activation_codes(store: RecordStore) -> ActivationTotals:
    # A one-row page still carries the totals for the whole table
    page = await store.list_records(limit=1)
    return page.totals

async def main():
    store = build_record_store(get_settings())
    try:
        totals = await count_activation_codes(store)
    finally:
        await store.close()
    print(f"Activation codes in {store.backend} store: total={totals.total} used={totals.used} unused={totals.unused}")

if __name__ == "__main__":
    asyncio.run(main())
