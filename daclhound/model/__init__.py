"""
daclhound Model Module
======================

Contains the core data models and the graph sink for classified objects.

Key Components:
- schemas.py: Typed dataclasses for directory objects, ACEs and edges
- graph_builder.py: NetworkX-based sink accumulating objects and ACL edges
"""

from .schemas import (
    ObjectType,
    DirectoryObject,
    AccessEdge,
    AccessControlEntry,
    SecurityDescriptor,
    DomainControllerRecord
)
from .graph_builder import ACLGraph
