"""
Domain Controller Registry
==========================

Index of domain controller account SIDs for one collection run.

Built once per domain when collection of that domain starts and merged
across every domain in the run. Cross-domain SIDs share no namespace in
practice, but the registry never faults on a repeated key: the first record
for a SID is kept, an identical re-insert is ignored, and a conflicting one
is reported and dropped.
"""

import threading
from typing import Callable, Iterable, Optional

from ..model.schemas import DomainControllerRecord
from .tables import DC_LDAP_FILTER


class DomainControllerRegistry:
    """Thread-safe SID -> DomainControllerRecord map.

    Usage:
        registry = DomainControllerRegistry()
        registry.build("corp.local", directory)
        registry.is_domain_controller("S-1-5-21-...-1000")
    """

    def __init__(
        self,
        verbose: bool = True,
        progress_callback: Optional[Callable[[str], None]] = None
    ):
        self._records: dict[str, DomainControllerRecord] = {}
        self._domains: set[str] = set()
        self._lock = threading.Lock()
        self.verbose = verbose
        self.progress_callback = progress_callback

    def _log(self, message: str) -> None:
        """Log a message to console and/or callback."""
        if self.verbose:
            print(message)
        if self.progress_callback:
            self.progress_callback(message)

    def build(self, domain: str, directory) -> int:
        """Query one domain for DC accounts and merge them in.

        A domain is only queried once per run; later calls return 0. A domain
        whose query failed is not recorded, so a later call retries it.

        Args:
            domain: Domain name (e.g., "corp.local")
            directory: Object exposing query(domain, ldap_filter, attributes, scope)

        Returns:
            Number of records added
        """
        with self._lock:
            if domain.lower() in self._domains:
                return 0

        self._log(f"[*] Pre-populating domain controller SIDs for {domain}")

        records = []
        for entry in directory.query(domain, DC_LDAP_FILTER, ['objectsid', 'samaccountname'], 'subtree'):
            sid = entry.get_sid()
            if sid:
                records.append(DomainControllerRecord(
                    sid=sid,
                    domain=domain,
                    name=entry.get_string('samaccountname') or '',
                    distinguished_name=entry.distinguished_name or ''
                ))

        added = self.merge(domain, records)
        with self._lock:
            self._domains.add(domain.lower())
        self._log(f"[+] Found {added} domain controllers in {domain}")
        return added

    def merge(self, domain: str, records: Iterable[DomainControllerRecord]) -> int:
        """Merge records collected from ``domain``.

        Returns:
            Number of records that were new
        """
        added = 0
        for record in records:
            sid = record.sid.upper()
            with self._lock:
                existing = self._records.get(sid)
                if existing is None:
                    self._records[sid] = record
                    added += 1
                    continue
            if existing != record:
                self._log(
                    f"[!] Domain controller SID {sid} from {domain} already registered "
                    f"from {existing.domain}; keeping the first record"
                )
        return added

    def is_domain_controller(self, sid: str) -> bool:
        with self._lock:
            return sid.upper() in self._records

    def get(self, sid: str) -> Optional[DomainControllerRecord]:
        with self._lock:
            return self._records.get(sid.upper())

    def __contains__(self, sid: str) -> bool:
        return self.is_domain_controller(sid)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
