from __future__ import annotations

import argparse

import orjson

from murmur_api.core.config import Settings
from murmur_api.seed import seed_demo_graph
from murmur_api.store import build_store


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Seed demo users, follows, posts, comments and likes (idempotent)."
    )
    parser.add_argument(
        "--db-url",
        default=None,
        help="Override MURMUR_DB_URL for this run (sql backend only).",
    )
    args = parser.parse_args()

    settings = Settings()
    if args.db_url:
        settings = settings.model_copy(update={"db_url": str(args.db_url)})
    if settings.store_backend != "sql":
        raise SystemExit("seed_data: the memory backend does not persist; use MURMUR_STORE_BACKEND=sql")

    out = seed_demo_graph(build_store(settings))
    print(orjson.dumps(out, option=orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS).decode("utf-8"))


if __name__ == "__main__":
    main()
