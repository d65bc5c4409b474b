"""Create the configured super admin (SUPERADMIN_USERNAME / SUPERADMIN_PASSWORD)."""
from schoolchat.core.config import Settings
from schoolchat.core.database import Database
from schoolchat.core.observability import configure_logging
from schoolchat.services.accounts import ensure_super_admin


def main():
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    database = Database(settings.database_url)
    database.create_all()
    db = database.session()
    try:
        ensure_super_admin(db, settings)
    finally:
        db.close()
        database.dispose()


if __name__ == "__main__":
    main()
