# slamkit

Geometric and bookkeeping building blocks for a feature-based visual SLAM
pipeline, built on NumPy and PyYAML.

## Modules

- `slamkit.epnp`: `EPnP(fu, fv, uc, vc)` estimates a world-to-camera pose
  from at least four 3D–2D correspondences. `compute_pose(points_world,
  points_image)` returns `(rotation, translation, mean_reprojection_error)`,
  trying three initial approximations refined by Gauss–Newton and keeping the
  one with the smallest reprojection error. Helpers: `qr_solve(a, b)`
  (Householder least squares, raises `numpy.linalg.LinAlgError` on a vanishing
  column), `mat_to_quat(rotation)` and `relative_error(...)`.
- `slamkit.pnp_ransac`: `PnPRansac` runs RANSAC over minimal-set EPnP
  hypotheses built from `PnPCorrespondence` items (world point, image point,
  squared level sigma, index in the frame's matches). A hypothesis with enough
  inliers is refined on all of them. `iterate(n)` and `find()` return a
  `PnPResult` with `pose` (4x4 or `None`), per-match `inliers`, `n_inliers`
  and `no_more`. `set_ransac_parameters` defaults to probability 0.99,
  8 minimum inliers, 300 iterations, a minimal set of 4, epsilon 0.4 and a
  chi-square threshold of 5.991.
- `slamkit.sim3`: `compute_sim3(points1, points2, fix_scale)` gives the
  closed-form similarity taking `points2` onto `points1` as a `Sim3Estimate`
  (rotation, translation, scale, `t12`, `t21`). `Sim3Solver` runs RANSAC over
  three-point samples of `Sim3Correspondence` items, checking reprojection in
  both cameras, and returns a `Sim3Result`. Also `project(points, transform,
  k)` and `camera_to_image(points, k)`.
- `slamkit.trajectory`: `save_trajectory_tum`, `save_keyframe_trajectory_tum`
  and `save_trajectory_kitti` write trajectories built from `FrameRecord` and
  `KeyFrameRecord`. Culled keyframes are followed up to their parent. Each
  writer returns the number of lines written. Also `rotation_to_quaternion`,
  `invert_pose`, `tum_line` and `kitti_line`.
- `slamkit.settings`: `read_settings(path)` and `parse_settings(text)` read a
  YAML settings file, accepting a `%YAML:1.0` header and `opencv-matrix`
  entries. `camera_from_mapping`, `orb_from_mapping` and
  `viewer_from_mapping` build `CameraSettings`, `ORBSettings` and
  `ViewerSettings`; `depth_threshold` and `depth_map_factor` derive the
  stereo/RGB-D depth values.
- `slamkit.modes`: `ModeRequests` holds thread-safe localization-mode and
  reset requests (`take_mode_change()` returns a `ModeChange`, `take_reset()`
  a bool). `MapChangeWatcher.changed(index)` reports whether a map change
  index is newer than the last one seen.
- `slamkit.control`: `StopFinishControl` is the stop/release/finish handshake
  between a worker loop and its owner.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Example: pose by RANSAC

```python
import numpy as np
from slamkit.pnp_ransac import PnPCorrespondence, PnPRansac

rng = np.random.default_rng(0)
points = rng.uniform([-1, -1, 4], [1, 1, 6], size=(40, 3))
fu = fv = 500.0
uc, vc = 320.0, 240.0
pixels = np.column_stack([uc + fu * points[:, 0] / points[:, 2],
                          vc + fv * points[:, 1] / points[:, 2]])

correspondences = [
    PnPCorrespondence(tuple(p), tuple(u), 1.0, i)
    for i, (p, u) in enumerate(zip(points, pixels))
]
solver = PnPRansac(correspondences, len(correspondences), fu, fv, uc, vc, seed=0)
solver.set_ransac_parameters(0.99, 10, 300, 4, 0.5, 5.991)
result = solver.find()
print(result.n_inliers, result.pose)
```

## Example: settings and trajectory export

```python
from slamkit.settings import read_settings, camera_from_mapping
from slamkit.trajectory import save_keyframe_trajectory_tum

camera = camera_from_mapping(read_settings("settings.yaml"))
print(camera.k, camera.dist_coef, camera.max_frames)

n_lines = save_keyframe_trajectory_tum("keyframes.txt", keyframes)
```

TUM lines hold the timestamp, the camera position and the orientation as
`qx qy qz qw`; KITTI lines hold the 3x4 camera-to-world matrix row by row.

## What this package does not do

slamkit is a library of parts. It does not extract or match image features,
does not run a tracking, mapping or loop-closing pipeline, keeps no map or
keyframe database, has no viewer window and installs no command. The caller
supplies the correspondences, keyframe records and threads these parts work
with.