#!/usr/bin/env python3
"""
Store profile seeding script.

Loads store scrape profiles from stores_seed.json and upserts them into the
stores table (matched by name).

Schema for stores_seed.json:
- Each store object must have: name, store_type
- Optional fields with defaults:
  - api_enabled: bool (default: false) - Ask the store API before scraping
  - scrape_enabled: bool (default: true)
  - price_selectors: list of CSS selectors, tried in order (default: [])
"""

import asyncio
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from dealwatch.db.models import Base, StoreModel
from dealwatch.db.session import create_engine, create_session_factory
from dealwatch.stores.base import StoreType

SEED_FILE = Path(__file__).parent / "stores_seed.json"


def load_profiles(path: Path = SEED_FILE) -> list[dict]:
    with open(path, encoding="utf-8") as f:
        data = json.load(f)

    profiles = []
    for entry in data:
        name = (entry.get("name") or "").strip()
        store_type = StoreType.from_key(entry.get("store_type"))
        if not name or store_type is None:
            print(f"  [SKIP] Invalid entry (name/store_type): {entry}")
            continue
        selectors = [s for s in entry.get("price_selectors", []) if isinstance(s, str) and s.strip()]
        profiles.append({
            "name": name,
            "store_type": store_type.value,
            "api_enabled": bool(entry.get("api_enabled", False)),
            "scrape_enabled": bool(entry.get("scrape_enabled", True)),
            "scrape_config": {"price_selectors": selectors},
        })
    return profiles


async def seed_stores(path: Path = SEED_FILE):
    profiles = load_profiles(path)
    print(f"Loaded {len(profiles)} store profiles from {path.name}")

    engine = create_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = create_session_factory(engine)
    created = updated = 0
    async with session_factory() as db:
        for profile in profiles:
            result = await db.execute(select(StoreModel).where(StoreModel.name == profile["name"]))
            store = result.scalars().first()
            if store is None:
                db.add(StoreModel(**profile))
                created += 1
                print(f"  [NEW] {profile['name']} ({profile['store_type']})")
            else:
                for key, value in profile.items():
                    setattr(store, key, value)
                updated += 1
                print(f"  [UPDATE] {profile['name']} ({profile['store_type']})")
        await db.commit()

    await engine.dispose()
    print(f"\nDone: {created} created, {updated} updated")


async def list_stores():
    engine = create_engine()
    session_factory = create_session_factory(engine)
    async with session_factory() as db:
        result = await db.execute(select(StoreModel).order_by(StoreModel.name))
        stores = result.scalars().all()

    print(f"{len(stores)} stores:")
    for store in stores:
        selectors = (store.scrape_config or {}).get("price_selectors", [])
        flags = []
        if store.api_enabled:
            flags.append("api")
        if store.scrape_enabled:
            flags.append("scrape")
        print(f"  {store.id:>4}  {store.name:<24} {store.store_type or '-':<10} "
              f"[{', '.join(flags) or 'disabled'}] {len(selectors)} selectors")
    await engine.dispose()


if __name__ == "__main__":
    if len(sys.argv) > 1:
        if sys.argv[1] == "--list":
            asyncio.run(list_stores())
        elif sys.argv[1] == "--help":
            print("Usage: python seed_stores.py [OPTIONS] [SEED_FILE]")
            print("")
            print("Options:")
            print("  --list      List all stored store profiles")
            print("  --help      Show this help message")
        else:
            asyncio.run(seed_stores(Path(sys.argv[1])))
    else:
        asyncio.run(seed_stores())
