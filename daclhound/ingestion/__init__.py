"""
daclhound Ingestion Module
==========================

Directory access and the concurrent collection pipeline.

Components:
- directory.py: ldap3 adapter and DirectoryEntry
- producer.py: Query producers, bounded queue and fault channel
- pipeline.py: Worker pool tying producers, ACL stages and the sink together

Design Philosophy:
- Producers never block forever: a full queue applies backpressure but
  cancellation is always observed
- A failing domain never takes the rest of the run down with it
"""

from .directory import LDAPDirectory, DirectoryEntry, classify_entry
from .producer import BoundedEntryQueue, QueryProducer, FaultChannel, ProducerFault, QueueClosed
from .pipeline import CollectionPipeline, PipelineResult, build_object, ACL_FILTER, ACL_ATTRIBUTES
