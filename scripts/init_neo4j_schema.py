from __future__ import annotations

import asyncio

from relgraph.core.config import get_settings
from relgraph.db.neo4j.driver import Neo4jGraphStore, get_driver
from relgraph.db.neo4j.schema import SCHEMA_STATEMENTS


async def _apply() -> None:
    settings = get_settings()
    driver = get_driver(settings)
    if driver is None:
        print("Neo4j URI not configured; skipping")
        return
    store = Neo4jGraphStore(driver, settings)
    try:
        await store.ensure_schema()
    finally:
        await store.close()
    for statement in SCHEMA_STATEMENTS:
        print(f"Applied: {statement}")


def main() -> None:
    asyncio.run(_apply())


if __name__ == "__main__":
    main()
