"""Saving camera and keyframe trajectories in TUM and KITTI text formats."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Optional

import numpy as np


@dataclass(eq=False)
class KeyFrameRecord:
    """A keyframe's identity, timestamp and world-to-camera pose.

    A culled keyframe is ``bad``; it then keeps its ``parent`` in the spanning
    tree and its pose relative to it (``parent_relative_pose`` = Tcw * Twp).
    """

    id: int
    timestamp: float
    pose: np.ndarray
    bad: bool = False
    parent: Optional["KeyFrameRecord"] = None
    parent_relative_pose: Optional[np.ndarray] = None


@dataclass(eq=False)
class FrameRecord:
    """A tracked frame: its pose relative to a reference keyframe and whether tracking was lost."""

    relative_pose: np.ndarray
    reference: KeyFrameRecord
    timestamp: float
    lost: bool = False


def rotation_to_quaternion(rotation):
    """Return ``[x, y, z, w]`` for a 3x3 rotation matrix."""
    m = np.asarray(rotation, dtype=float)
    if m.shape != (3, 3):
        raise ValueError("rotation must be a 3x3 matrix")
    q = [0.0, 0.0, 0.0, 0.0]
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    if trace > 0.0:
        t = math.sqrt(trace + 1.0)
        q[3] = 0.5 * t
        t = 0.5 / t
        q[0] = (m[2, 1] - m[1, 2]) * t
        q[1] = (m[0, 2] - m[2, 0]) * t
        q[2] = (m[1, 0] - m[0, 1]) * t
    else:
        i = 0
        if m[1, 1] > m[0, 0]:
            i = 1
        if m[2, 2] > m[i, i]:
            i = 2
        j = (i + 1) % 3
        k = (j + 1) % 3
        t = math.sqrt(m[i, i] - m[j, j] - m[k, k] + 1.0)
        q[i] = 0.5 * t
        t = 0.5 / t
        q[3] = (m[k, j] - m[j, k]) * t
        q[j] = (m[j, i] + m[i, j]) * t
        q[k] = (m[k, i] + m[i, k]) * t
    return [float(v) for v in q]


def invert_pose(tcw):
    """Invert a rigid 4x4 transform."""
    tcw = np.asarray(tcw, dtype=float)
    if tcw.shape != (4, 4):
        raise ValueError("pose must be a 4x4 matrix")
    rwc = tcw[:3, :3].T
    twc = np.eye(4)
    twc[:3, :3] = rwc
    twc[:3, 3] = -rwc @ tcw[:3, 3]
    return twc


def tum_line(timestamp, twc, precision):
    """Format ``timestamp tx ty tz qx qy qz qw`` for a camera-to-world pose."""
    twc = np.asarray(twc, dtype=float)
    if twc.shape != (4, 4):
        raise ValueError("pose must be a 4x4 matrix")
    values = list(twc[:3, 3]) + rotation_to_quaternion(twc[:3, :3])
    return f"{timestamp:.6f} " + " ".join(f"{v:.{precision}f}" for v in values)


def kitti_line(tcw):
    """Format the camera-to-world 3x4 matrix of a world-to-camera pose, row by row."""
    twc = invert_pose(tcw)
    return " ".join(f"{v:.9f}" for v in twc[:3, :4].reshape(-1))


def _world_to_reference(keyframe, origin):
    trw = np.eye(4)
    while keyframe.bad:
        if keyframe.parent is None or keyframe.parent_relative_pose is None:
            raise ValueError(f"culled keyframe {keyframe.id} has no parent to fall back on")
        trw = trw @ np.asarray(keyframe.parent_relative_pose, dtype=float)
        keyframe = keyframe.parent
    return trw @ np.asarray(keyframe.pose, dtype=float) @ origin


def _origin(origin):
    return np.eye(4) if origin is None else np.asarray(origin, dtype=float)


def _frame_poses(frames: Iterable[FrameRecord], origin, skip_lost):
    origin = _origin(origin)
    for frame in frames:
        if skip_lost and frame.lost:
            continue
        trw = _world_to_reference(frame.reference, origin)
        yield frame, np.asarray(frame.relative_pose, dtype=float) @ trw


def _write(path, lines):
    with open(path, "w", encoding="utf-8") as handle:
        for line in lines:
            handle.write(line + "\n")
    return len(lines)


def save_trajectory_tum(path, frames, origin=None):
    """Write every tracked frame in TUM format; lost frames are skipped.

    ``origin`` is the camera-to-world pose of the first keyframe, so that it
    becomes the origin. Returns the number of lines written.
    """
    lines = [
        tum_line(frame.timestamp, invert_pose(tcw), 9)
        for frame, tcw in _frame_poses(frames, origin, skip_lost=True)
    ]
    return _write(path, lines)


def save_keyframe_trajectory_tum(path, keyframes):
    """Write the non-culled keyframes in TUM format, ordered by id."""
    lines = [
        tum_line(kf.timestamp, invert_pose(kf.pose), 7)
        for kf in sorted(keyframes, key=lambda kf: kf.id)
        if not kf.bad
    ]
    return _write(path, lines)


def save_trajectory_kitti(path, frames, origin=None):
    """Write every frame's pose in KITTI format, lost frames included."""
    lines = [kitti_line(tcw) for _, tcw in _frame_poses(frames, origin, skip_lost=False)]
    return _write(path, lines)