from __future__ import annotations

import argparse
import sys

import orjson

from murmur_api.core.config import Settings
from murmur_api.integrity import audit_graph
from murmur_api.store import build_store


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Scan the social graph for broken references and asymmetric edges."
    )
    parser.add_argument(
        "--db-url",
        default=None,
        help="Override MURMUR_DB_URL for this run.",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=500,
        help="Max issues to print (default: 500).",
    )
    args = parser.parse_args()

    settings = Settings()
    if args.db_url:
        settings = settings.model_copy(update={"db_url": str(args.db_url)})

    issues = audit_graph(build_store(settings))
    for issue in issues[: max(0, int(args.limit))]:
        print(orjson.dumps(issue.as_dict()).decode("utf-8"))
    print(f"issues={len(issues)}", file=sys.stderr)
    if issues:
        sys.exit(1)


if __name__ == "__main__":
    main()
