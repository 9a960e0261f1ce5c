"""Similarity transform between two cameras from matched 3D points, with RANSAC."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

# Chi-square value at 99% for two degrees of freedom.
_CHI2_2DOF = 9.210
_MIN_SET = 3


@dataclass(frozen=True)
class Sim3Correspondence:
    """A pair of map points seen in two keyframes.

    ``point1`` and ``point2`` are given in the coordinates of camera 1 and
    camera 2; ``sigma2_1`` and ``sigma2_2`` are the squared scale-level
    uncertainties of the keypoints; ``index`` is the position of the match in
    the list of matches of keyframe 1.
    """

    point1: tuple
    point2: tuple
    sigma2_1: float
    sigma2_2: float
    index: int


@dataclass(frozen=True, eq=False)
class Sim3Estimate:
    """Rotation, translation and scale mapping camera-2 points into camera 1.

    ``t12`` is the 4x4 transform ``[s*R | t]`` and ``t21`` its inverse.
    """

    rotation: np.ndarray
    translation: np.ndarray
    scale: float
    t12: np.ndarray
    t21: np.ndarray


@dataclass(frozen=True, eq=False)
class Sim3Result:
    """Outcome of a RANSAC run.

    ``transform`` is the 4x4 ``t12`` matrix or ``None``; ``inliers`` has one
    flag per match of keyframe 1; ``no_more`` is true once the iterations are
    exhausted.
    """

    transform: Optional[np.ndarray]
    inliers: tuple
    n_inliers: int
    no_more: bool


def _rodrigues(vec):
    theta = float(np.linalg.norm(vec))
    if theta < 1e-15:
        return np.eye(3)
    k = vec / theta
    skew = np.array([
        [0.0, -k[2], k[1]],
        [k[2], 0.0, -k[0]],
        [-k[1], k[0], 0.0],
    ])
    return np.eye(3) + math.sin(theta) * skew + (1.0 - math.cos(theta)) * (skew @ skew)


def _as_points(points, name):
    array = np.asarray(points, dtype=float)
    if array.ndim != 2 or array.shape[1] != 3:
        raise ValueError(f"{name} must have shape (n, 3)")
    return array


def compute_sim3(points1, points2, fix_scale=False):
    """Closed-form similarity (Horn's quaternion method) taking points2 onto points1."""
    p1 = _as_points(points1, "points1")
    p2 = _as_points(points2, "points2")
    if p1.shape != p2.shape or p1.shape[0] == 0:
        raise ValueError("points1 and points2 must be non-empty and of equal length")

    with np.errstate(all="ignore"):
        o1 = p1.mean(axis=0)
        o2 = p2.mean(axis=0)
        pr1 = p1 - o1
        pr2 = p2 - o2

        m = pr2.T @ pr1
        n11 = m[0, 0] + m[1, 1] + m[2, 2]
        n12 = m[1, 2] - m[2, 1]
        n13 = m[2, 0] - m[0, 2]
        n14 = m[0, 1] - m[1, 0]
        n22 = m[0, 0] - m[1, 1] - m[2, 2]
        n23 = m[0, 1] + m[1, 0]
        n24 = m[2, 0] + m[0, 2]
        n33 = -m[0, 0] + m[1, 1] - m[2, 2]
        n34 = m[1, 2] + m[2, 1]
        n44 = -m[0, 0] - m[1, 1] + m[2, 2]
        n_matrix = np.array([
            [n11, n12, n13, n14],
            [n12, n22, n23, n24],
            [n13, n23, n33, n34],
            [n14, n24, n34, n44],
        ])

        _, vectors = np.linalg.eigh(n_matrix)
        quaternion = vectors[:, -1]
        imaginary = quaternion[1:]
        sin_half = float(np.linalg.norm(imaginary))
        if sin_half == 0.0:
            rotation = np.eye(3)
        else:
            angle = math.atan2(sin_half, quaternion[0])
            rotation = _rodrigues(2.0 * angle * imaginary / sin_half)

        rotated = pr2 @ rotation.T
        if fix_scale:
            scale = 1.0
        else:
            scale = float(np.sum(pr1 * rotated) / np.sum(rotated ** 2))

        translation = o1 - scale * rotation @ o2

        t12 = np.eye(4)
        t12[:3, :3] = scale * rotation
        t12[:3, 3] = translation

        s_r_inv = rotation.T / scale
        t21 = np.eye(4)
        t21[:3, :3] = s_r_inv
        t21[:3, 3] = -s_r_inv @ translation

    return Sim3Estimate(rotation, translation, scale, t12, t21)


def _intrinsics(k):
    k = np.asarray(k, dtype=float)
    if k.shape != (3, 3):
        raise ValueError("k must be a 3x3 calibration matrix")
    return k[0, 0], k[1, 1], k[0, 2], k[1, 2]


def camera_to_image(points, k):
    """Pinhole projection of camera-frame points to pixel coordinates, shape (n, 2)."""
    pc = _as_points(points, "points")
    fx, fy, cx, cy = _intrinsics(k)
    with np.errstate(all="ignore"):
        inv_z = 1.0 / pc[:, 2]
        return np.column_stack([fx * pc[:, 0] * inv_z + cx, fy * pc[:, 1] * inv_z + cy])


def project(points, transform, k):
    """Transform points by a 4x4 matrix, then project them with calibration ``k``."""
    pw = _as_points(points, "points")
    transform = np.asarray(transform, dtype=float)
    if transform.shape != (4, 4):
        raise ValueError("transform must be a 4x4 matrix")
    pc = pw @ transform[:3, :3].T + transform[:3, 3]
    return camera_to_image(pc, k)


class Sim3Solver:
    """RANSAC over three-point similarity hypotheses between two keyframes."""

    def __init__(self, correspondences: Sequence[Sim3Correspondence], n_matches, k1, k2,
                 fix_scale=False, seed=None):
        self._correspondences = list(correspondences)
        self.n_matches = int(n_matches)
        for c in self._correspondences:
            if not 0 <= c.index < self.n_matches:
                raise ValueError(f"correspondence index {c.index} outside 0..{self.n_matches - 1}")
        self.k1 = np.asarray(k1, dtype=float)
        self.k2 = np.asarray(k2, dtype=float)
        self.fix_scale = bool(fix_scale)
        self._random = random.Random(seed)

        self._x1 = np.array([c.point1 for c in self._correspondences], dtype=float).reshape(-1, 3)
        self._x2 = np.array([c.point2 for c in self._correspondences], dtype=float).reshape(-1, 3)
        self._max_error1 = _CHI2_2DOF * np.array([c.sigma2_1 for c in self._correspondences], dtype=float)
        self._max_error2 = _CHI2_2DOF * np.array([c.sigma2_2 for c in self._correspondences], dtype=float)
        self._indices = [c.index for c in self._correspondences]

        self._p1_im1 = camera_to_image(self._x1, self.k1)
        self._p2_im2 = camera_to_image(self._x2, self.k2)

        self.best: Optional[Sim3Estimate] = None
        self._best_inliers = np.zeros(len(self._correspondences), dtype=bool)
        self._n_best_inliers = 0

        self.set_ransac_parameters()

    @property
    def n_correspondences(self):
        return len(self._correspondences)

    def set_ransac_parameters(self, probability=0.99, min_inliers=6, max_iterations=300):
        """Configure RANSAC and restart its iteration count."""
        n = self.n_correspondences
        self.probability = probability
        self.min_inliers = int(min_inliers)

        if self.min_inliers >= n:
            n_iterations = 1
        elif self.min_inliers <= 0:
            n_iterations = int(max_iterations)
        else:
            epsilon = self.min_inliers / n
            n_iterations = math.ceil(math.log(1 - probability) / math.log(1 - epsilon ** 3))
        self.max_iterations = max(1, min(n_iterations, int(max_iterations)))
        self.iterations = 0

    def _check_inliers(self, estimate):
        p2_im1 = project(self._x2, estimate.t12, self.k1)
        p1_im2 = project(self._x1, estimate.t21, self.k2)
        with np.errstate(all="ignore"):
            err1 = np.sum((self._p1_im1 - p2_im1) ** 2, axis=1)
            err2 = np.sum((p1_im2 - self._p2_im2) ** 2, axis=1)
            return (err1 < self._max_error1) & (err2 < self._max_error2)

    def _frame_flags(self, mask):
        flags = [False] * self.n_matches
        for i, inlier in enumerate(mask):
            if inlier:
                flags[self._indices[i]] = True
        return tuple(flags)

    def iterate(self, n_iterations):
        """Run up to ``n_iterations`` more hypotheses and return a Sim3Result."""
        no_flags = tuple([False] * self.n_matches)
        n = self.n_correspondences
        if n < self.min_inliers:
            return Sim3Result(None, no_flags, 0, True)

        current = 0
        while self.iterations < self.max_iterations and current < n_iterations:
            current += 1
            self.iterations += 1

            sample = self._random.sample(range(n), _MIN_SET)
            estimate = compute_sim3(self._x1[sample], self._x2[sample], self.fix_scale)
            mask = self._check_inliers(estimate)
            n_inliers = int(mask.sum())

            if n_inliers >= self._n_best_inliers:
                self._best_inliers = mask.copy()
                self._n_best_inliers = n_inliers
                self.best = estimate
                if n_inliers > self.min_inliers:
                    return Sim3Result(estimate.t12.copy(), self._frame_flags(mask), n_inliers, False)

        return Sim3Result(None, no_flags, 0, self.iterations >= self.max_iterations)

    def find(self):
        """Run RANSAC with the configured maximum number of iterations."""
        return self.iterate(self.max_iterations)