"""Frame lookup for re-expressing incoming poses into the tracking frame."""

from __future__ import annotations

import logging
import threading
from collections import deque

from ..math3d.transform import (
    RigidTransform,
    compose_transforms,
    identity_transform,
    invert_transform,
)

logger = logging.getLogger(__name__)


class FrameLookup:
    """Base interface for transform lookups between named frames."""

    def lookup_transform(self, target_frame: str, source_frame: str) -> RigidTransform:
        """Return T_target_source. Raise LookupError when it cannot be resolved."""
        raise NotImplementedError


class StaticTransformBuffer(FrameLookup):
    """Static parent->child transforms, resolved through any chain of frames."""

    def __init__(self):
        self._lock = threading.Lock()
        self._edges: dict[tuple[str, str], RigidTransform] = {}

    def set_transform(self, parent: str, child: str, tf: RigidTransform) -> None:
        if not parent or not child:
            raise ValueError("frame names must be non-empty")
        if parent == child:
            raise ValueError(f"transform from frame {parent!r} to itself")
        with self._lock:
            self._edges[(parent, child)] = tf
        logger.debug("[FRAMES] static transform %s -> %s", parent, child)

    def frames(self) -> set[str]:
        with self._lock:
            return {f for edge in self._edges for f in edge}

    def _neighbors(self) -> dict[str, list[tuple[str, RigidTransform]]]:
        with self._lock:
            edges = dict(self._edges)
        graph: dict[str, list[tuple[str, RigidTransform]]] = {}
        for (parent, child), tf in edges.items():
            graph.setdefault(parent, []).append((child, tf))
            graph.setdefault(child, []).append((parent, invert_transform(tf)))
        return graph

    def lookup_transform(self, target_frame: str, source_frame: str) -> RigidTransform:
        if target_frame == source_frame:
            return identity_transform()

        graph = self._neighbors()
        if target_frame not in graph or source_frame not in graph:
            raise LookupError(f"no transform from {source_frame!r} to {target_frame!r}")

        # Breadth-first walk accumulating T_target_node.
        visited = {target_frame}
        queue = deque([(target_frame, identity_transform())])
        while queue:
            frame, tf_target_frame = queue.popleft()
            for nxt, tf_frame_nxt in graph[frame]:
                if nxt in visited:
                    continue
                tf_target_nxt = compose_transforms(tf_target_frame, tf_frame_nxt)
                if nxt == source_frame:
                    return tf_target_nxt
                visited.add(nxt)
                queue.append((nxt, tf_target_nxt))
        raise LookupError(f"frames {source_frame!r} and {target_frame!r} are not connected")
