"""RANSAC camera relocalization over EPnP with a final refinement step."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from slamkit.epnp import EPnP


@dataclass(frozen=True)
class PnPCorrespondence:
    """A map point matched to an undistorted keypoint of the frame.

    ``index`` is the keypoint's position in the frame's list of matches and
    ``sigma2`` the squared scale-level uncertainty of the keypoint.
    """

    point_world: tuple
    point_image: tuple
    sigma2: float
    index: int


@dataclass(frozen=True)
class PnPResult:
    """Outcome of a RANSAC run.

    ``pose`` is a 4x4 world-to-camera transform or ``None``; ``inliers`` has one
    flag per frame match when a pose was found and is empty otherwise.
    ``no_more`` is true once the solver has exhausted its iterations.
    """

    pose: Optional[np.ndarray]
    inliers: tuple
    n_inliers: int
    no_more: bool


def _pose_matrix(rotation, translation):
    pose = np.eye(4)
    pose[:3, :3] = rotation
    pose[:3, 3] = translation
    return pose


class PnPRansac:
    """Robust camera pose from 3D-2D matches using minimal-set EPnP hypotheses."""

    def __init__(self, correspondences: Sequence[PnPCorrespondence], n_matches, fu, fv, uc, vc, seed=None):
        self._correspondences = list(correspondences)
        self.n_matches = int(n_matches)
        for c in self._correspondences:
            if not 0 <= c.index < self.n_matches:
                raise ValueError(f"correspondence index {c.index} outside 0..{self.n_matches - 1}")
        self._points_world = np.array([c.point_world for c in self._correspondences], dtype=float).reshape(-1, 3)
        self._points_image = np.array([c.point_image for c in self._correspondences], dtype=float).reshape(-1, 2)
        self._sigma2 = np.array([c.sigma2 for c in self._correspondences], dtype=float)
        self._indices = [c.index for c in self._correspondences]
        self._epnp = EPnP(fu, fv, uc, vc)
        self._random = random.Random(seed)

        self.iterations = 0
        self._best_inliers = np.zeros(len(self._correspondences), dtype=bool)
        self._n_best_inliers = 0
        self._best_pose: Optional[np.ndarray] = None

        self.set_ransac_parameters()

    @property
    def n_correspondences(self):
        return len(self._correspondences)

    def set_ransac_parameters(self, probability=0.99, min_inliers=8, max_iterations=300,
                              min_set=4, epsilon=0.4, th2=5.991):
        """Configure RANSAC, adjusting the thresholds to the number of matches."""
        n = self.n_correspondences
        self.probability = probability
        self.min_set = int(min_set)

        self.min_inliers = max(int(n * epsilon), int(min_inliers), self.min_set)
        if n > 0 and epsilon < self.min_inliers / n:
            epsilon = self.min_inliers / n
        self.epsilon = epsilon

        if self.min_inliers >= n:
            n_iterations = 1
        else:
            n_iterations = math.ceil(math.log(1 - probability) / math.log(1 - epsilon ** 3))
        self.max_iterations = max(1, min(n_iterations, int(max_iterations)))

        self._max_error = self._sigma2 * th2

    def _check_inliers(self, rotation, translation):
        with np.errstate(all="ignore"):
            pc = self._points_world @ np.asarray(rotation).T + np.asarray(translation).reshape(3)
            inv_z = 1.0 / pc[:, 2]
            ue = self._epnp.uc + self._epnp.fu * pc[:, 0] * inv_z
            ve = self._epnp.vc + self._epnp.fv * pc[:, 1] * inv_z
            error2 = (self._points_image[:, 0] - ue) ** 2 + (self._points_image[:, 1] - ve) ** 2
            return error2 < self._max_error

    def _frame_flags(self, mask):
        flags = [False] * self.n_matches
        for i, inlier in enumerate(mask):
            if inlier:
                flags[self._indices[i]] = True
        return tuple(flags)

    def _refine(self):
        chosen = np.flatnonzero(self._best_inliers)
        rotation, translation, _ = self._epnp.compute_pose(
            self._points_world[chosen], self._points_image[chosen])
        mask = self._check_inliers(rotation, translation)
        n_inliers = int(mask.sum())
        if n_inliers > self.min_inliers:
            return _pose_matrix(rotation, translation), mask, n_inliers
        return None

    def iterate(self, n_iterations):
        """Run up to ``n_iterations`` more hypotheses and return a PnPResult."""
        n = self.n_correspondences
        if n < self.min_inliers:
            return PnPResult(None, (), 0, True)

        current = 0
        while self.iterations < self.max_iterations or current < n_iterations:
            current += 1
            self.iterations += 1

            sample = self._random.sample(range(n), self.min_set)
            rotation, translation, _ = self._epnp.compute_pose(
                self._points_world[sample], self._points_image[sample])
            mask = self._check_inliers(rotation, translation)
            n_inliers = int(mask.sum())

            if n_inliers >= self.min_inliers:
                if n_inliers > self._n_best_inliers:
                    self._best_inliers = mask.copy()
                    self._n_best_inliers = n_inliers
                    self._best_pose = _pose_matrix(rotation, translation)

                refined = self._refine()
                if refined is not None:
                    pose, refined_mask, n_refined = refined
                    return PnPResult(pose, self._frame_flags(refined_mask), n_refined, False)

        if self.iterations >= self.max_iterations:
            if self._n_best_inliers >= self.min_inliers and self._best_pose is not None:
                return PnPResult(self._best_pose.copy(), self._frame_flags(self._best_inliers),
                                 self._n_best_inliers, True)
            return PnPResult(None, (), 0, True)
        return PnPResult(None, (), 0, False)

    def find(self):
        """Run RANSAC with the configured maximum number of iterations."""
        return self.iterate(self.max_iterations)