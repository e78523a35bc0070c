from typing import List
import argparse
import asyncio
import logging

from social.bonjour.card.content.store import create_content_store
from social.bonjour.card.model.engine import create_database_engine, create_session_maker
from social.bonjour.card.registry.handles import HandleRegistry
from social.bonjour.card.registry.profiles import ProfileStore
from social.bonjour.card.resolve.publication import Resolver

logger = logging.getLogger(__name__)


async def realMain() -> None:
    parser = argparse.ArgumentParser(prog="resolve", description="Resolve handles")
    parser.add_argument("handle", nargs="+", help="The handle(s) to resolve.")
    parser.add_argument(
        "--database-url",
        default="postgresql+asyncpg://postgres:password@db/bonjour",
        help="The SQLAlchemy async database URL of the registry.",
    )
    parser.add_argument(
        "--content-backend",
        default="database",
        choices=["database", "filesystem"],
        help="Where avatar blobs are stored.",
    )
    parser.add_argument(
        "--content-path", default="blobs", help="Root of the filesystem content backend."
    )
    parser.add_argument(
        "--base-url",
        default="https://bonjour.walrus.site",
        help="The public base URL of card pages.",
    )

    args = vars(parser.parse_args())

    handles: List[str] = args.get("handle", [])

    engine = create_database_engine(args["database_url"])
    database_session_maker = create_session_maker(engine)
    content_store = create_content_store(
        args["content_backend"],
        database_session_maker=database_session_maker,
        content_path=args["content_path"],
    )
    resolver = Resolver(
        HandleRegistry(database_session_maker),
        ProfileStore(database_session_maker, content_store=content_store),
        content_store,
        args["base_url"],
    )

    try:
        for handle in handles:
            try:
                entry = await resolver.resolve(handle)
                if entry is None:
                    print(f"not_found {handle}")
                else:
                    print(entry.model_dump_json())
            except Exception:
                logging.exception("Exception resolving handle %s", handle)
    finally:
        await content_store.close()
        await engine.dispose()


def main() -> None:
    asyncio.run(realMain())


if __name__ == "__main__":
    main()
