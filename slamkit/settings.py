"""Camera, ORB extractor and viewer settings read from a YAML settings file."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

import numpy as np
import yaml

_DEFAULT_FPS = 30.0
_DEFAULT_WIDTH = 640
_DEFAULT_HEIGHT = 480
_DEPTH_FACTOR_EPSILON = 1e-5


class _SettingsLoader(yaml.SafeLoader):
    """Safe loader that also understands matrices written by OpenCV."""


def _construct_opencv_matrix(loader, node):
    fields = loader.construct_mapping(node, deep=True)
    try:
        rows = int(fields["rows"])
        cols = int(fields["cols"])
        data = fields["data"]
    except KeyError as exc:
        raise ValueError(f"matrix entry lacks field {exc.args[0]!r}") from None
    return np.asarray(data, dtype=float).reshape(rows, cols)


_SettingsLoader.add_constructor("tag:yaml.org,2002:opencv-matrix", _construct_opencv_matrix)


def parse_settings(text):
    """Parse the text of a settings file into a dictionary of values.

    An OpenCV ``%YAML:1.0`` header line is accepted and ignored.
    """
    lines = [line for line in text.splitlines() if not line.lstrip().startswith("%YAML")]
    data = yaml.load("\n".join(lines), Loader=_SettingsLoader)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("settings must be a mapping of names to values")
    return data


def read_settings(path):
    """Read and parse a settings file; raises OSError if it cannot be opened."""
    with open(path, encoding="utf-8") as handle:
        return parse_settings(handle.read())


def _number(values: Mapping, key):
    """Numeric value of ``key``; a missing entry reads as zero."""
    value = values.get(key, 0)
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            pass
    raise ValueError(f"setting {key!r} is not a number: {value!r}")


def _integer(values, key):
    return int(_number(values, key))


@dataclass(frozen=True)
class CameraSettings:
    """Pinhole calibration, distortion, stereo baseline and frame rate."""

    fx: float
    fy: float
    cx: float
    cy: float
    dist_coef: tuple
    bf: float
    fps: float
    rgb: bool

    @property
    def k(self):
        """The 3x3 calibration matrix."""
        k = np.eye(3)
        k[0, 0] = self.fx
        k[1, 1] = self.fy
        k[0, 2] = self.cx
        k[1, 2] = self.cy
        return k

    @property
    def max_frames(self):
        """Frames between keyframe insertions and relocalization checks."""
        return int(self.fps)

    @property
    def min_frames(self):
        return 0


@dataclass(frozen=True)
class ORBSettings:
    """Parameters of the ORB feature extractor."""

    n_features: int
    scale_factor: float
    n_levels: int
    ini_th_fast: int
    min_th_fast: int

    @property
    def initial_features(self):
        """Features extracted while initializing a monocular map."""
        return 2 * self.n_features


@dataclass(frozen=True)
class ViewerSettings:
    """Frame period, image size and viewpoint for the map viewer."""

    frame_period_ms: float
    image_width: int
    image_height: int
    viewpoint_x: float
    viewpoint_y: float
    viewpoint_z: float
    viewpoint_f: float


def camera_from_mapping(values):
    """Build CameraSettings from parsed settings.

    Distortion holds k1, k2, p1, p2, then k3 if non-zero, then k4..k6 (with
    k3 in fifth place) if any of them is non-zero. A zero frame rate means 30.
    """
    dist = [
        _number(values, "Camera.k1"),
        _number(values, "Camera.k2"),
        _number(values, "Camera.p1"),
        _number(values, "Camera.p2"),
    ]
    k3 = _number(values, "Camera.k3")
    if k3 != 0:
        dist.append(k3)
    k4 = _number(values, "Camera.k4")
    k5 = _number(values, "Camera.k5")
    k6 = _number(values, "Camera.k6")
    if k4 != 0 or k5 != 0 or k6 != 0:
        if len(dist) == 4:
            dist.append(k3)
        dist.extend([k4, k5, k6])

    fps = _number(values, "Camera.fps")
    if fps == 0:
        fps = _DEFAULT_FPS

    return CameraSettings(
        fx=_number(values, "Camera.fx"),
        fy=_number(values, "Camera.fy"),
        cx=_number(values, "Camera.cx"),
        cy=_number(values, "Camera.cy"),
        dist_coef=tuple(dist),
        bf=_number(values, "Camera.bf"),
        fps=fps,
        rgb=bool(_integer(values, "Camera.RGB")),
    )


def orb_from_mapping(values):
    """Build ORBSettings from parsed settings."""
    return ORBSettings(
        n_features=_integer(values, "ORBextractor.nFeatures"),
        scale_factor=_number(values, "ORBextractor.scaleFactor"),
        n_levels=_integer(values, "ORBextractor.nLevels"),
        ini_th_fast=_integer(values, "ORBextractor.iniThFAST"),
        min_th_fast=_integer(values, "ORBextractor.minThFAST"),
    )


def viewer_from_mapping(values):
    """Build ViewerSettings; a frame rate below 1 means 30, a missing size 640x480."""
    fps = _number(values, "Camera.fps")
    if fps < 1:
        fps = _DEFAULT_FPS
    width = _number(values, "Camera.width")
    height = _number(values, "Camera.height")
    if width < 1 or height < 1:
        width, height = _DEFAULT_WIDTH, _DEFAULT_HEIGHT
    return ViewerSettings(
        frame_period_ms=1e3 / fps,
        image_width=int(width),
        image_height=int(height),
        viewpoint_x=_number(values, "Viewer.ViewpointX"),
        viewpoint_y=_number(values, "Viewer.ViewpointY"),
        viewpoint_z=_number(values, "Viewer.ViewpointZ"),
        viewpoint_f=_number(values, "Viewer.ViewpointF"),
    )


def depth_threshold(camera, values):
    """Depth separating close from far points for stereo and RGB-D sensors."""
    if camera.fx == 0:
        raise ValueError("Camera.fx must be non-zero to compute the depth threshold")
    return camera.bf * _number(values, "ThDepth") / camera.fx


def depth_map_factor(values):
    """Scale turning raw depth-map values into metres; 1 when unset."""
    raw = _number(values, "DepthMapFactor")
    if abs(raw) < _DEPTH_FACTOR_EPSILON:
        return 1.0
    return 1.0 / raw