import asyncio
from vsend.core.config import settings
from vsend.db.session import create_engine, create_session_factory
from vsend.services.store import LedgerStore

async def audit_transfers():
    engine = create_engine(settings.DATABASE_URL)
    store = LedgerStore(create_session_factory(engine))
    try:
        references = await store.find_unpaired_transfer_references()
        with open("results.txt", "w") as f:
            f.write("\n--- UNPAIRED TRANSFERS ---\n")
            for reference in references:
                legs = await store.list_transactions_by_reference(reference)
                for leg in legs:
                    f.write(f"Ref: {reference:24} {leg.type.value:12} {leg.amount:>12} Account: {leg.account_id}\n")
            f.write(f"--------------------------\n{len(references)} reference(s) need reconciliation\n")
    finally:
        await engine.dispose()

if __name__ == "__main__":
    asyncio.run(audit_transfers())
