from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base

IN_MEMORY_URLS = ('sqlite://', 'sqlite:///:memory:')


class Database:
    """Engine and session factory for one process."""

    def __init__(self, url: str, echo: bool = False):
        kwargs = {'echo': echo}
        if url.startswith('sqlite'):
            kwargs['connect_args'] = {'check_same_thread': False}
            if url in IN_MEMORY_URLS:
                # one shared connection, otherwise every session sees an empty database
                kwargs['poolclass'] = StaticPool
        self.engine = create_engine(url, **kwargs)
        if url.startswith('sqlite'):
            event.listen(self.engine, 'connect', _enable_sqlite_foreign_keys)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_all(self):
        Base.metadata.create_all(self.engine)

    def drop_all(self):
        Base.metadata.drop_all(self.engine)

    def session(self):
        return self.SessionLocal()

    def dispose(self):
        self.engine.dispose()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
