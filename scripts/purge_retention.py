"""Delete chat history older than the retention window.

Meant for cron, e.g. ``0 3 1 * * python scripts/purge_retention.py``.
"""
import argparse
import logging

from schoolchat.core.config import Settings
from schoolchat.core.database import Database
from schoolchat.core.observability import configure_logging
from schoolchat.services import retention


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--database-url", help="override DATABASE_URL")
    parser.add_argument("--months", type=int, help="override the configured retention window")
    args = parser.parse_args()

    settings = Settings.from_env()
    if args.database_url:
        settings.database_url = args.database_url
    configure_logging(settings.log_level)

    database = Database(settings.database_url)
    db = database.session()
    try:
        report = retention.purge(db, settings, months=args.months)
    finally:
        db.close()
        database.dispose()

    logging.getLogger("purge").info(
        "Purge finished",
        extra={
            "cutoff": report.cutoff.date().isoformat(),
            "deleted_messages": report.deleted_messages,
            "deleted_chats": report.deleted_chats,
        },
    )


if __name__ == "__main__":
    main()
