import logging
import math
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from facelogin.config import FACE_MATCH_THRESHOLD

logger = logging.getLogger(__name__)


class FaceMatchError(Exception):
    """Base class for face login rejections."""


class NoEnrolledUsers(FaceMatchError):
    """No stored face descriptors to match against."""


class NoMatch(FaceMatchError):
    """The closest stored descriptor is farther than the threshold."""


@dataclass(frozen=True)
class FaceMatch:
    identity: Any
    distance: float


def euclidean_distance(descriptor1: Sequence[float], descriptor2: Sequence[float]) -> float:
    """
    Euclidean distance between two face descriptors.

    Descriptors of different lengths are never compared: the distance is
    positive infinity, so that candidate can never be the best match.
    """
    if len(descriptor1) != len(descriptor2):
        return math.inf
    a = np.asarray(descriptor1, dtype=np.float64)
    b = np.asarray(descriptor2, dtype=np.float64)
    return float(np.linalg.norm(a - b))


class FaceMatcher:
    """
    Nearest-neighbour search over every enrolled descriptor.

    Args:
        store: anything with an ``all_enrolled_descriptors()`` method returning
            an iterable of ``(identity, descriptor)`` pairs
        threshold: maximum accepted Euclidean distance (inclusive)
    """

    def __init__(self, store, threshold: float = FACE_MATCH_THRESHOLD):
        self.store = store
        self.threshold = threshold

    def best_candidate(
        self,
        descriptor: Sequence[float],
        candidates: Iterable[Tuple[Any, Sequence[float]]],
    ) -> Tuple[Optional[Any], float]:
        best_identity = None
        min_distance = math.inf

        for identity, stored in candidates:
            distance = euclidean_distance(descriptor, stored)
            # Strict comparison: on a tie the first candidate wins
            if distance < min_distance:
                min_distance = distance
                best_identity = identity

        return best_identity, min_distance

    def match(self, descriptor: List[float]) -> FaceMatch:
        """
        Find the enrolled identity closest to ``descriptor``.

        Returns:
            FaceMatch: best identity and its distance

        Raises:
            NoEnrolledUsers: the store has no enrolled descriptors
            NoMatch: the closest descriptor is farther than the threshold
        """
        candidates = list(self.store.all_enrolled_descriptors())
        if not candidates:
            logger.info("Face match rejected: no enrolled users")
            raise NoEnrolledUsers()

        best_identity, min_distance = self.best_candidate(descriptor, candidates)
        logger.debug(
            f"Face comparison: candidates={len(candidates)}, min_distance={min_distance:.4f}, "
            f"threshold={self.threshold}"
        )

        # Distance exactly equal to the threshold is accepted
        if best_identity is None or min_distance > self.threshold:
            logger.info("Face match rejected: face not recognized")
            raise NoMatch()

        logger.info("Face match accepted")
        return FaceMatch(identity=best_identity, distance=min_distance)
