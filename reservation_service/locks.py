import threading
from contextlib import contextmanager


class ListingLocks:
    """
    One mutex per listing. Writers hold it only for the conflict check and
    the insert that follows, so two bookings for the same listing can never
    both pass the check. Different listings never wait on each other.
    """

    def __init__(self):
        self._registry_lock = threading.Lock()
        self._locks: dict[int, threading.Lock] = {}

    def lock_for(self, listing_id: int) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(listing_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[listing_id] = lock
            return lock

    @contextmanager
    def hold(self, listing_id: int):
        lock = self.lock_for(listing_id)
        with lock:
            yield


# Process-wide registry shared by every request
listing_locks = ListingLocks()

# Same registry keyed by reservation id. Refunds of one charge take this
# one, so the provider call never holds a listing's write lock.
reservation_locks = ListingLocks()
