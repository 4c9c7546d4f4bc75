"""
Lease-based mutual exclusion for sync runs.

A lease is a row with an owner token and an expiry. A run that crashes
without releasing its lease blocks others only until the expiry passes.
"""
import logging
import time
import uuid
from typing import Callable

from ..database.ops import DBOperations
from ..exceptions import SyncInProgress

class SyncLease:
    def __init__(self,
                 db_ops: DBOperations,
                 name: str,
                 ttl_seconds: float,
                 clock: Callable[[], float] = time.time):
        self.db = db_ops
        self.name = name
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.owner = uuid.uuid4().hex
        self.held = False

    def acquire(self) -> bool:
        now = self.clock()
        self.held = self.db.try_acquire_lease(self.name, self.owner, now, now + self.ttl_seconds)
        if self.held:
            logging.debug(f"Lease {self.name} acquired by {self.owner}")
        return self.held

    def renew(self) -> bool:
        """Pushes the expiry out again. Returns False if the lease was lost."""
        if not self.held:
            return False
        self.held = self.db.renew_lease(self.name, self.owner, self.clock() + self.ttl_seconds)
        if not self.held:
            logging.warning(f"Lease {self.name} was taken over by another run")
        return self.held

    def release(self):
        if self.held:
            self.db.release_lease(self.name, self.owner)
            self.held = False
            logging.debug(f"Lease {self.name} released")

    def __enter__(self) -> "SyncLease":
        if not self.acquire():
            raise SyncInProgress(f"Another run holds lease '{self.name}'")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
