"""
daclhound ACL Module
====================

Security descriptor decoding and ACL edge extraction.

Key Components:
- tables.py: Schema GUIDs, well-known principals, access mask constants
- descriptor.py: Binary security descriptor parser
- sid_resolver.py: SID -> principal type resolution with a shared cache
- dc_registry.py: Run-wide domain controller SID index
- classifier.py: ACE -> AccessEdge rules
"""

from .descriptor import SecurityDescriptorParser, ParseError, convert_sid, format_guid
from .sid_resolver import SidResolver, SidCache
from .dc_registry import DomainControllerRegistry
from .classifier import AceClassifier, process_sid, is_ace_applicable
