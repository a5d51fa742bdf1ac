"""
Collection Pipeline
===================

Runs query producers for one or more domains and a pool of worker threads
that turn each delivered entry into a classified DirectoryObject.

Flow:
    QueryProducer(s) -> BoundedEntryQueue -> worker threads -> sink

Each worker builds the DirectoryObject, runs the stages in order (by
default: ACL classification, then domain controller marking) and hands
the object to the sink. A fault in one producer stops that producer's
domain; everything already queued is still delivered.
"""

import threading
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..acl.classifier import AceClassifier
from ..acl.dc_registry import DomainControllerRegistry
from ..acl.descriptor import format_guid, ParseError
from ..acl.sid_resolver import SidResolver
from ..acl.tables import DC_LDAP_FILTER
from ..config import CollectorConfig, get_config
from ..model.graph_builder import ACLGraph
from ..model.schemas import DirectoryObject, ObjectType
from .directory import DirectoryEntry, classify_entry
from .producer import BoundedEntryQueue, FaultChannel, ProducerFault, QueryProducer, QueueClosed


# Every object type that carries an ACL worth collecting
ACL_FILTER = (
    "(|(samAccountType=805306368)(samAccountType=805306369)"
    "(samAccountType=268435456)(samAccountType=268435457)"
    "(samAccountType=536870912)(samAccountType=536870913)"
    "(objectClass=domain)"
    "(&(objectCategory=groupPolicyContainer)(flags=*))"
    "(objectCategory=organizationalUnit))"
)

ACL_ATTRIBUTES = [
    'sAMAccountName', 'distinguishedName', 'dNSHostName', 'sAMAccountType',
    'objectSid', 'objectGUID', 'objectClass', 'nTSecurityDescriptor',
    'ms-Mcs-AdmPwdExpirationTime', 'displayName', 'name'
]


@dataclass
class PipelineResult:
    """Outcome of one pipeline run.

    Attributes:
        delivered: Number of objects handed to the sink
        faults: ProducerFault list, one per failed producer or domain setup
        cancelled: Whether the run was cancelled
    """
    delivered: int = 0
    faults: list = field(default_factory=list)
    cancelled: bool = False

    @property
    def faulted_domains(self) -> set:
        return {fault.domain for fault in self.faults}


def build_object(domain: str, entry: DirectoryEntry) -> DirectoryObject:
    """Create the DirectoryObject for a delivered entry."""
    object_type = classify_entry(entry)

    object_id = entry.get_sid()
    if not object_id:
        guid_bytes = entry.get_bytes('objectguid')
        if guid_bytes:
            try:
                object_id = format_guid(guid_bytes).upper()
            except ParseError:
                object_id = None
    if not object_id:
        object_id = entry.distinguished_name

    return DirectoryObject(
        object_id=object_id,
        domain=domain,
        object_type=object_type,
        distinguished_name=entry.distinguished_name,
        attributes=entry
    )


class CollectionPipeline:
    """Concurrent, backpressure-bounded ACL collection.

    Usage:
        pipeline = CollectionPipeline(LDAPDirectory({"corp.local": conn}))
        pipeline.add_acl_collection("corp.local")
        result = pipeline.run()
        pipeline.sink.get_edges_by_right("GenericAll")

    Args:
        directory: Query source exposing query(), lookup_sid_type() and,
            optionally, get_name_from_guid()
        config: CollectorConfig; the global configuration when omitted
        sid_resolver: Shared SidResolver; built on the directory when omitted
        dc_registry: Shared DomainControllerRegistry
        sink: Object with add_object(DirectoryObject); an ACLGraph when omitted
        stages: Worker stages replacing the default ACL + DC marking stages
        progress_callback: Optional callback for progress updates
    """

    def __init__(
        self,
        directory,
        config: Optional[CollectorConfig] = None,
        sid_resolver: Optional[SidResolver] = None,
        dc_registry: Optional[DomainControllerRegistry] = None,
        sink=None,
        stages: Optional[list] = None,
        progress_callback: Optional[Callable[[str], None]] = None
    ):
        if config is None:
            config = get_config()

        self.directory = directory
        self.config = config
        self.verbose = config.verbose
        self.progress_callback = progress_callback

        self.sid_resolver = sid_resolver or SidResolver(getattr(directory, 'lookup_sid_type', None))
        self.dc_registry = dc_registry or DomainControllerRegistry(
            verbose=config.verbose, progress_callback=progress_callback
        )
        self.sink = sink if sink is not None else ACLGraph()

        if stages is None:
            classifier = AceClassifier(
                self.sid_resolver,
                schema_resolver=getattr(directory, 'get_name_from_guid', None),
                debug=config.debug,
                progress_callback=progress_callback
            )
            stages = [classifier, self.mark_domain_controller]
        self.stages = stages

        self._queries: list[tuple] = []
        self._cancel_event = threading.Event()
        self._delivered = 0
        self._delivered_lock = threading.Lock()

    def _log(self, message: str) -> None:
        """Log a message to console and/or callback."""
        if self.verbose:
            print(message)
        if self.progress_callback:
            self.progress_callback(message)

    def add_query(self, domain: str, ldap_filter: str, attributes: list, scope: str = 'subtree') -> None:
        """Schedule one producer."""
        self._queries.append((domain, ldap_filter, list(attributes), scope))

    def add_acl_collection(self, domain: str) -> None:
        """Schedule the standard ACL query for a domain."""
        self.add_query(domain, ACL_FILTER, ACL_ATTRIBUTES)

    def cancel(self) -> None:
        """Stop producers promptly; queued entries are still processed."""
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def mark_domain_controller(self, obj: DirectoryObject) -> DirectoryObject:
        """Flag computer objects that are domain controllers."""
        if obj.object_type == ObjectType.COMPUTER:
            obj.properties['isdc'] = self.dc_registry.is_domain_controller(obj.object_id)
        return obj

    def run(self) -> PipelineResult:
        """Run every scheduled query to completion.

        Returns:
            PipelineResult with the delivered count and producer faults
        """
        fault_channel = FaultChannel()
        entry_queue = BoundedEntryQueue(
            self.config.pipeline.queue_capacity,
            put_timeout=self.config.pipeline.put_timeout
        )
        self._delivered = 0

        self._log(f"[*] Starting collection: {len(self._queries)} queries, "
                  f"{self.config.pipeline.worker_count} workers, "
                  f"queue capacity {entry_queue.capacity}")

        self._prepare_domains(fault_channel)

        producers = []
        for domain, ldap_filter, attributes, scope in self._queries:
            if fault_channel.is_faulted(domain):
                continue
            producers.append(QueryProducer(
                domain, ldap_filter, attributes, self.directory, scope,
                verbose=self.verbose, progress_callback=self.progress_callback
            ))

        for _ in producers:
            entry_queue.register_producer()
        if not producers:
            entry_queue.close_if_idle()

        producer_threads = [
            threading.Thread(
                target=producer.run,
                args=(entry_queue, fault_channel, self._cancel_event),
                name=f"producer-{index}",
                daemon=True
            )
            for index, producer in enumerate(producers)
        ]
        worker_threads = [
            threading.Thread(target=self._worker, args=(entry_queue,), name=f"worker-{index}", daemon=True)
            for index in range(self.config.pipeline.worker_count)
        ]

        for thread in worker_threads + producer_threads:
            thread.start()
        for thread in producer_threads + worker_threads:
            thread.join()

        result = PipelineResult(
            delivered=self._delivered,
            faults=fault_channel.faults,
            cancelled=self.cancelled
        )

        for fault in result.faults:
            self._log(f"[!] Collection incomplete for {fault.domain}: {fault.error}")
        self._log(f"[+] Collection complete: {result.delivered} objects processed")

        return result

    def _prepare_domains(self, fault_channel: FaultChannel) -> None:
        """Build the DC registry once for each domain in the run."""
        seen = set()
        for domain, _, _, _ in self._queries:
            if domain.lower() in seen:
                continue
            seen.add(domain.lower())
            try:
                self.dc_registry.build(domain, self.directory)
            except Exception as e:
                fault_channel.report(ProducerFault(domain, DC_LDAP_FILTER, e))
                self._log(f"[!] Could not enumerate domain controllers for {domain}, skipping domain: {e}")

    def _worker(self, entry_queue: BoundedEntryQueue) -> None:
        while True:
            try:
                domain, entry = entry_queue.get()
            except QueueClosed:
                return

            obj = build_object(domain, entry)
            for stage in self.stages:
                try:
                    obj = stage(obj)
                except Exception as e:
                    if self.config.debug:
                        self._log(f"[!] Error processing {obj.distinguished_name or obj.object_id}: {e}")

            try:
                self.sink.add_object(obj)
            except Exception as e:
                self._log(f"[!] Sink rejected {obj.distinguished_name or obj.object_id}: {e}")
                continue

            with self._delivered_lock:
                self._delivered += 1
