"""
daclhound - Active Directory ACL Collection Pipeline
=====================================================

Streams directory objects out of one or more Active Directory domains and
turns each object's nTSecurityDescriptor into typed access-control edges
ready for attack-path graph construction.

Architecture Overview:
----------------------
- acl/: Security descriptor parsing, ACE classification, SID resolution,
  domain controller registry and the static schema tables
- ingestion/: ldap3 directory adapter, query producers, bounded queue and
  the worker pipeline
- model/: Typed data models and the networkx-backed edge sink

Design Decisions:
-----------------
1. Shared run state (SID cache, DC registry) is constructed explicitly and
   handed to every worker instead of living in module globals
2. Producers and workers are plain threads joined by a bounded queue
3. All data models use Python dataclasses
4. Nothing is ever written to the directory

License: Research/Educational Use Only
"""

__version__ = "1.0.0"
__author__ = "daclhound Research Team"

from .config import CollectorConfig
