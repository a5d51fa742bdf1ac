"""
daclhound Graph Builder
=======================

NetworkX-based sink for classified directory objects.

Design Decisions:
-----------------
1. Uses NetworkX MultiDiGraph: one principal can hold several distinct
   rights over the same object, and each is its own edge
2. Nodes are stored with their DirectoryObject as an attribute
3. Edges point from the principal to the object it has rights over
4. Workers call add_object concurrently, so mutation is lock-guarded

This module only accumulates the graph. Traversal and path finding belong
to whoever consumes it.
"""

import threading
from collections import defaultdict
from typing import Iterator, Optional

import networkx as nx

from .schemas import DirectoryObject, AccessEdge, ObjectType


class ACLGraph:
    """Abstraction layer over NetworkX for collected ACL data.

    Example Usage:
        graph = ACLGraph()
        pipeline = CollectionPipeline(directory, sink=graph, ...)
        pipeline.run()

        graph.get_edges_by_right("GenericAll")
    """

    def __init__(self):
        """Initialize empty ACL graph."""
        self._graph = nx.MultiDiGraph()
        self._lock = threading.Lock()

        # Index structures for efficient queries
        self._nodes_by_type: dict[ObjectType, set[str]] = defaultdict(set)
        self._edges_by_right: dict[str, set[tuple]] = defaultdict(set)

    @property
    def nx_graph(self) -> nx.MultiDiGraph:
        """Access underlying NetworkX graph for advanced operations."""
        return self._graph

    def add_object(self, obj: DirectoryObject) -> None:
        """Add a classified object and its ACL edges.

        Principals that have not been collected yet are created with the
        principal type reported on the edge.
        """
        with self._lock:
            if self._graph.has_node(obj.object_id):
                previous_type = self._graph.nodes[obj.object_id].get('node_type')
                if previous_type is not None and previous_type != obj.object_type:
                    self._nodes_by_type[previous_type].discard(obj.object_id)

            self._graph.add_node(
                obj.object_id,
                node_obj=obj,
                node_type=obj.object_type,
                domain=obj.domain,
                **obj.properties
            )
            self._nodes_by_type[obj.object_type].add(obj.object_id)

            for edge in obj.aces:
                self._add_edge(edge, obj.object_id)

    def _add_edge(self, edge: AccessEdge, target_id: str) -> None:
        if not self._graph.has_node(edge.principal_sid):
            self._graph.add_node(edge.principal_sid, node_type=edge.principal_type)
            self._nodes_by_type[edge.principal_type].add(edge.principal_sid)

        key = (edge.right_name, edge.ace_type, edge.is_inherited)
        self._graph.add_edge(
            edge.principal_sid,
            target_id,
            key=key,
            edge_obj=edge,
            right_name=edge.right_name,
            ace_type=edge.ace_type,
            is_inherited=edge.is_inherited
        )
        self._edges_by_right[edge.right_name].add((edge.principal_sid, target_id))

    def get_object(self, object_id: str) -> Optional[DirectoryObject]:
        """Get a collected object by its object ID."""
        if not self._graph.has_node(object_id):
            return None
        return self._graph.nodes[object_id].get('node_obj')

    def get_objects_by_type(self, object_type: ObjectType) -> Iterator[DirectoryObject]:
        """Iterate over collected objects of one type."""
        for object_id in list(self._nodes_by_type.get(object_type, ())):
            obj = self.get_object(object_id)
            if obj:
                yield obj

    def get_edges_by_right(self, right_name: str) -> Iterator[tuple]:
        """Iterate over (principal_sid, object_id, AccessEdge) for one right."""
        for source_id, target_id in list(self._edges_by_right.get(right_name, ())):
            for data in self._graph.get_edge_data(source_id, target_id, default={}).values():
                edge = data.get('edge_obj')
                if edge and edge.right_name == right_name:
                    yield source_id, target_id, edge

    def get_inbound_edges(self, object_id: str) -> list:
        """Return every AccessEdge held over an object."""
        if not self._graph.has_node(object_id):
            return []
        return [
            data['edge_obj']
            for _, _, data in self._graph.in_edges(object_id, data=True)
        ]

    @property
    def node_count(self) -> int:
        """Number of nodes in the graph."""
        return self._graph.number_of_nodes()

    @property
    def edge_count(self) -> int:
        """Number of edges in the graph."""
        return self._graph.number_of_edges()

    def merge(self, other: "ACLGraph") -> None:
        """Merge another graph's collected objects into this one."""
        for object_type in list(other._nodes_by_type):
            for obj in other.get_objects_by_type(object_type):
                self.add_object(obj)

    def to_dict(self) -> dict:
        """Convert collected objects to a BloodHound-like dictionary."""
        data = []
        with self._lock:
            for object_id, attrs in self._graph.nodes(data=True):
                obj = attrs.get('node_obj')
                if obj is None:
                    continue
                data.append({
                    "ObjectIdentifier": obj.object_id,
                    "ObjectType": obj.object_type.value,
                    "Domain": obj.domain.upper(),
                    "Properties": dict(obj.properties),
                    "Aces": [edge.to_dict() for edge in obj.aces],
                })
        return {"meta": {"type": "acls", "count": len(data)}, "data": data}
