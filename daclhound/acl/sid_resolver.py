"""
SID Resolver
============

Resolves a SID to the type of principal it names.

Well-known SIDs are answered from the static table. Everything else goes
to the directory once per run and is remembered in a SidCache shared by
all workers. The cache lock is only held for the dict access, never across
the directory round trip: two workers missing on the same SID will both
look it up and the last write wins.
"""

import threading
from typing import Callable, Optional

from ..model.schemas import ObjectType
from .tables import WELL_KNOWN_PRINCIPALS


class SidCache:
    """Lock-guarded SID -> ObjectType map for one collection run."""

    def __init__(self):
        self._entries: dict[str, ObjectType] = {}
        self._lock = threading.Lock()

    def get(self, sid: str) -> Optional[ObjectType]:
        with self._lock:
            return self._entries.get(sid)

    def set(self, sid: str, principal_type: ObjectType) -> None:
        with self._lock:
            self._entries[sid] = principal_type

    def __contains__(self, sid: str) -> bool:
        with self._lock:
            return sid in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class SidResolver:
    """Resolve SIDs to principal types.

    Usage:
        resolver = SidResolver(directory.lookup_sid_type)
        resolver.resolve("S-1-5-21-...-1104")  # ObjectType.USER

    Args:
        lookup: Callable taking a SID and returning an ObjectType, or None
            when the SID is not found. May raise on transport errors.
        cache: Shared cache; a new one is created when omitted
    """

    def __init__(
        self,
        lookup: Optional[Callable[[str], Optional[ObjectType]]] = None,
        cache: Optional[SidCache] = None
    ):
        self.lookup = lookup
        self.cache = cache if cache is not None else SidCache()

    @staticmethod
    def get_well_known(sid: str) -> Optional[tuple]:
        """Return (ObjectType, name) for a well-known SID, else None."""
        return WELL_KNOWN_PRINCIPALS.get(sid.upper())

    def resolve(self, sid: str) -> ObjectType:
        """Resolve a SID to its principal type. Never raises.

        Lookup failures (not found, transport error) yield ObjectType.UNKNOWN,
        which is cached like any other answer.
        """
        sid = sid.upper()

        well_known = self.get_well_known(sid)
        if well_known:
            return well_known[0]

        cached = self.cache.get(sid)
        if cached is not None:
            return cached

        principal_type = ObjectType.UNKNOWN
        if self.lookup is not None:
            try:
                principal_type = self.lookup(sid) or ObjectType.UNKNOWN
            except Exception:
                principal_type = ObjectType.UNKNOWN

        self.cache.set(sid, principal_type)
        return principal_type

    def canonicalize(self, sid: str, domain: str) -> tuple:
        """Return (canonical SID, principal type) for an ACE trustee.

        Well-known SIDs are prefixed with the upper-cased domain of the
        object they were found on, e.g. "CORP.LOCAL-S-1-5-32-544", so the
        built-in groups of different domains stay separate nodes.
        """
        sid = sid.upper()
        well_known = self.get_well_known(sid)
        if well_known:
            return f"{domain.upper()}-{sid}", well_known[0]
        return sid, self.resolve(sid)
