# visfeat

Monocular visual feature tracking for the front end of a visual(-lidar)
odometry system, built on numpy and scipy.

## Modules

- `visfeat.pinhole` — a pinhole camera model with radial/tangential
  distortion. `PinholeParameters` holds the intrinsics and reads and writes
  OpenCV-style YAML files (`from_yaml`, `to_yaml`). `PinholeCamera` lifts
  image points to rays (`lift_projective`, `lift_sphere`), projects 3D points
  (`space_to_plane`, `undist_to_plane`), evaluates the distortion and its
  Jacobian (`distortion`, `distortion_jacobian`), builds undistortion and
  rectification remap tables (`init_undistort_map`,
  `init_undistort_rectify_map`) and converts its parameters to and from an
  eight-value list (`read_parameters`, `write_parameters`).
  `project_with_pose` projects a world point through a quaternion pose and a
  parameter vector.
- `visfeat.calibration` — `find_homography` (normalised DLT) and
  `estimate_intrinsics`, which sets the principal point to the image centre,
  zeroes the distortion and estimates the focal lengths from planar target
  views.
- `visfeat.config` — `load_config` reads the tracker settings file into a
  `Config` dataclass; `SemanticClass` lists the label values used for
  segmentation and detection rejection.
- `visfeat.vision` — image primitives: `good_features_to_track`
  (Shi–Tomasi corners with a mask and minimum distance),
  `calc_optical_flow_lk` (pyramidal Lucas–Kanade), `equalize_clahe` and
  `fill_circle`.
- `visfeat.tracker` — `FeatureTracker` tracks corners from frame to frame
  with a forward/backward flow check, drops points near the border, keeps
  long-lived tracks first, adds new corners spaced by the minimum distance,
  optionally flags points lying on segmentation or detection classes, and
  computes undistorted positions and per-feature velocities. `draw_track`
  renders the tracks onto a colour image. Helpers: `in_border`,
  `reduce_vector`, `distance`.
- `visfeat.cloud` — lidar cloud handling: `get_transformation`,
  `transform_points`, `voxel_downsample`, `filter_camera_view`, and
  `CloudBuffer`, which keeps recent scans in the world frame over a time
  window and fuses them into a downsampled depth cloud.
- `visfeat.frames` — `ImageSynchronizer` pairs camera images with
  segmentation or detection images by time stamp and resets on gaps or
  out-of-order images; `build_feature_frame` gathers a tracker's features
  seen more than once into a `FeatureFrame`.

## Installation

```
pip install .
```

For running the tests:

```
pip install .[test]
pytest
```

## Example

```python
import numpy as np
from visfeat.pinhole import PinholeCamera, PinholeParameters

params = PinholeParameters.from_yaml("camera.yaml")
camera = PinholeCamera(params)

ray = camera.lift_projective(np.array([320.0, 240.0]))
pixel = camera.space_to_plane(ray)
```

Tracking a sequence of grayscale frames:

```python
from visfeat.config import load_config
from visfeat.frames import build_feature_frame
from visfeat.tracker import FeatureTracker

config = load_config("settings.yaml", package_path="")
tracker = FeatureTracker(camera, config)
for stamp, image in frames:
    tracker.read_image(image, stamp)
    frame = build_feature_frame(tracker, stamp, config.seg, config.det)
```

## What it does not do

- It does not assign lidar depth to tracked features. `CloudBuffer` provides
  a fused depth cloud, but `FeatureFrame.depth` stays empty unless the caller
  fills it.
- It has no command-line program and no messaging layer: images, label
  images and lidar scans are handed in by the caller, and feature frames are
  returned rather than published.