import logging
from contextlib import contextmanager
from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from stacks.configs import DB_URI, DEBUG
from stacks.core.exceptions import StacksAPIError, StorageError

logger = logging.getLogger(__name__)

Base = declarative_base()


class Database:
    """Store client shared by every component.

    Constructed once per process and passed explicitly to the catalog,
    circulation and occupancy services. `open()` creates the engine and
    tables, `close()` disposes the connection pool.
    """

    def __init__(self, uri: str = DB_URI, echo: bool = DEBUG):
        self.uri = uri
        self.echo = echo
        self.engine = None
        self.Session = None

    def _engine_kwargs(self):
        engine_kwargs = {'echo': self.echo}
        if self.uri.startswith('sqlite'):
            engine_kwargs['connect_args'] = {
                'check_same_thread': False,
                'timeout': 30,
            }
            if ':memory:' in self.uri or self.uri == 'sqlite://':
                # one shared connection, otherwise every checkout sees an empty db
                engine_kwargs['poolclass'] = StaticPool
        else:
            engine_kwargs['client_encoding'] = 'utf8'
            engine_kwargs['pool_pre_ping'] = True
        return engine_kwargs

    @property
    def is_open(self):
        return self.engine is not None

    def open(self):
        if self.is_open:
            return self
        from stacks.core import models
        try:
            self.engine = create_engine(self.uri, **self._engine_kwargs())
            self.Session = sessionmaker(
                bind=self.engine, autocommit=False, autoflush=False,
                expire_on_commit=False)
            Base.metadata.create_all(bind=self.engine)
            with self.Session() as session:
                if not session.get(models.OccupancyGate, models.OccupancyGate.DEFAULT):
                    session.add(models.OccupancyGate(id=models.OccupancyGate.DEFAULT))
                    session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Database initialization failed: {e}")
            self.engine = None
            raise StorageError(f"Failed to open database: {e}") from e
        logger.info(f"Database opened ({self.engine.url.get_backend_name()})")
        return self

    def close(self):
        if self.engine is not None:
            self.engine.dispose()
            logger.info("Database closed")
        self.engine = None
        self.Session = None

    def healthcheck(self) -> bool:
        if not self.is_open:
            return False
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.warning(f"Database healthcheck failed: {e}")
            return False

    def session(self):
        if not self.is_open:
            raise StorageError("Database is not open.")
        return self.Session()

    @contextmanager
    def transaction(self):
        """One atomic unit: commits on success, rolls back every write on
        any error. Domain errors propagate unchanged, driver errors are
        wrapped in `StorageError`.
        """
        session = self.session()
        try:
            yield session
            session.commit()
        except StacksAPIError:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Transaction rolled back: {e}")
            raise StorageError(f"Database error: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def reader(self):
        session = self.session()
        try:
            yield session
        except SQLAlchemyError as e:
            logger.error(f"Read failed: {e}")
            raise StorageError(f"Database error: {e}") from e
        finally:
            session.close()
