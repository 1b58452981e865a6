"""Keyframe store interface and an in-memory implementation."""
from abc import ABC, abstractmethod
from typing import Dict, Iterator, List, Optional
import math
import threading

from .models import Keyframe, Pose2D


class KeyframeStore(ABC):
    """Read side of the pose-graph backend as seen by the registration engine.

    Both queries return ``None`` when they have no answer (empty store, no
    candidate, backend unreachable); the engine never expects an exception.
    """

    @abstractmethod
    def last_keyframe(self) -> Optional[Keyframe]:
        raise NotImplementedError

    @abstractmethod
    def closest_keyframe(self, reference: Keyframe) -> Optional[Keyframe]:
        raise NotImplementedError


class InMemoryKeyframeStore(KeyframeStore):
    """Keyframes kept in id order.

    ``closest_keyframe`` ranks candidates by planar distance between optimized
    poses and ignores the reference and its ``min_id_separation - 1`` most
    recent predecessors, since those are already chained by odometry factors.
    """

    def __init__(self, min_id_separation: int = 2, search_radius: Optional[float] = None):
        if min_id_separation < 1:
            raise ValueError("min_id_separation must be at least 1")
        self.min_id_separation = int(min_id_separation)
        self.search_radius = search_radius
        self._keyframes: Dict[int, Keyframe] = {}
        self._order: List[int] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._order)

    def __iter__(self) -> Iterator[Keyframe]:
        with self._lock:
            ids = list(self._order)
        return iter([self._keyframes[i] for i in ids])

    def next_id(self) -> int:
        with self._lock:
            return self._order[-1] + 1 if self._order else 0

    def add(self, keyframe: Keyframe) -> None:
        with self._lock:
            if self._order and keyframe.id <= self._order[-1]:
                raise ValueError(f"Keyframe ids must increase; got {keyframe.id} after {self._order[-1]}")
            self._keyframes[keyframe.id] = keyframe
            self._order.append(keyframe.id)

    def upsert(self, keyframe: Keyframe) -> None:
        """Insert a new keyframe or refresh an existing one (mirrors of a remote backend)."""
        with self._lock:
            if keyframe.id in self._keyframes:
                self._keyframes[keyframe.id] = keyframe
                return
            self._keyframes[keyframe.id] = keyframe
            self._order.append(keyframe.id)
            self._order.sort()

    def get(self, kid: int) -> Optional[Keyframe]:
        with self._lock:
            return self._keyframes.get(kid)

    def update_pose(self, kid: int, pose: Pose2D) -> None:
        with self._lock:
            kf = self._keyframes.get(kid)
            if kf is None:
                raise KeyError(kid)
            kf.optimized_pose = pose

    def last_keyframe(self) -> Optional[Keyframe]:
        with self._lock:
            if not self._order:
                return None
            return self._keyframes[self._order[-1]]

    def closest_keyframe(self, reference: Keyframe) -> Optional[Keyframe]:
        with self._lock:
            candidates = [self._keyframes[i] for i in self._order
                          if i <= reference.id - self.min_id_separation]
        best = None
        best_dist = math.inf
        ref = reference.optimized_pose
        for kf in candidates:
            dist = math.hypot(kf.optimized_pose.x - ref.x, kf.optimized_pose.y - ref.y)
            if self.search_radius is not None and dist > self.search_radius:
                continue
            if dist < best_dist:
                best, best_dist = kf, dist
        return best
