from logging.config import fileConfig

from sqlalchemy import create_engine, pool

from alembic import context

from jobboard.core.config import settings
from jobboard.core.base import Base

# Registers every interview-scheduling table on Base.metadata for autogenerate.
from jobboard.models.user import User  # noqa: F401
from jobboard.models.job import Job  # noqa: F401
from jobboard.models.application import Application  # noqa: F401
from jobboard.models.application_note import ApplicationNote  # noqa: F401
from jobboard.models.calendar_credential import CalendarCredential  # noqa: F401
from jobboard.models.interview_token import InterviewToken  # noqa: F401
from jobboard.models.interview_reschedule_request import InterviewRescheduleRequest  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# DDL runs as the migrator role when one is configured, else as the app user.
if settings.DB_MIGRATOR_USER and settings.DB_MIGRATOR_PASSWORD:
    migrations_url = settings.migrations_database_url
else:
    migrations_url = settings.database_url

# "%" is an interpolation marker for ConfigParser.
config.set_main_option("sqlalchemy.url", migrations_url.replace("%", "%%"))

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Emit the interview schema migrations as SQL without a database connection."""
    context.configure(
        url=migrations_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = create_engine(migrations_url, poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
