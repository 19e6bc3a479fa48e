from typing import Optional
from stacks.configs import DB_URI, LOAN_PERIOD_DAYS, MAX_CAPACITY
from stacks.core.db import Database
from stacks.core.locks import KeyedLocks
from stacks.core.catalog import Catalog, StudentDirectory
from stacks.core.circulation import Circulation
from stacks.core.occupancy import Occupancy


class StacksAPI:
    """Wires every service to one `Database` and one lock registry, so a
    catalog status change and a return on the same copy take turns.
    """

    def __init__(self, db: Optional[Database] = None,
                 loan_period_days: int = LOAN_PERIOD_DAYS,
                 max_capacity: int = MAX_CAPACITY):
        self.db = db or Database(DB_URI)
        self.locks = KeyedLocks()
        self.catalog = Catalog(self.db, self.locks)
        self.students = StudentDirectory(self.db)
        self.circulation = Circulation(self.db, self.locks, loan_period_days=loan_period_days)
        self.occupancy = Occupancy(self.db, self.locks, max_capacity=max_capacity)

    def open(self):
        self.db.open()
        return self

    def close(self):
        self.db.close()

    def healthcheck(self) -> bool:
        return self.db.healthcheck()

    def __enter__(self):
        return self.open()

    def __exit__(self, *exc):
        self.close()
