"""Database configuration and initialization."""
from sqlalchemy import create_engine, event
from sqlalchemy.orm import scoped_session, sessionmaker, declarative_base

# Create SQLAlchemy base
Base = declarative_base()

# Global session and engine
engine = None
db_session = None
SessionFactory = None


def _enable_sqlite_write_serialization(sqlite_engine):
    """
    Make every SQLite transaction start with BEGIN IMMEDIATE.

    pysqlite defers BEGIN until the first write, so two transactions can both
    read the same balance before either writes. Taking the write lock at the
    start of the transaction serializes them, which is what row locks give us
    on PostgreSQL.
    """
    @event.listens_for(sqlite_engine, 'connect')
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine, 'begin')
    def _begin_immediate(conn):
        conn.exec_driver_sql('BEGIN IMMEDIATE')


def build_engine(database_uri, echo=False):
    """Create an engine for the given URI with dialect-specific settings."""
    if database_uri.startswith('sqlite'):
        sqlite_engine = create_engine(
            database_uri,
            echo=echo,
            connect_args={'check_same_thread': False, 'timeout': 30},
        )
        _enable_sqlite_write_serialization(sqlite_engine)
        return sqlite_engine

    return create_engine(
        database_uri,
        echo=echo,
        pool_pre_ping=True,  # Enable connection health checks
        pool_size=10,
        max_overflow=20
    )


def init_db(app):
    """Initialize database connection."""
    global engine, db_session, SessionFactory

    engine = build_engine(
        app.config['SQLALCHEMY_DATABASE_URI'],
        echo=app.config.get('SQLALCHEMY_ECHO', False)
    )

    SessionFactory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db_session = scoped_session(SessionFactory)

    Base.query = db_session.query_property()

    # Register teardown
    @app.teardown_appcontext
    def shutdown_session(exception=None):
        """Close database session and rollback on error."""
        if exception:
            db_session.rollback()
        db_session.remove()


def create_all():
    """Create all tables for the registered models."""
    import payables.models  # noqa: F401 - registers mappers
    Base.metadata.create_all(bind=engine)


def drop_all():
    """Drop all tables for the registered models."""
    import payables.models  # noqa: F401
    Base.metadata.drop_all(bind=engine)


def get_session():
    """Get database session."""
    return db_session


def new_session():
    """Open an independent session (background jobs, threads)."""
    return SessionFactory()


