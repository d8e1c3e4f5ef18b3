#!/usr/bin/env python3
"""
Demonstrate the OCam camera model: loading parameters, projecting points with
their Jacobian, back-projecting pixels and building ray maps.
"""

import os
import sys

import numpy as np

from omnicam import OCamRayMaps, load_ocam


def demonstrate_projection(model):
  """Project a few points and back-project the resulting pixels."""
  print("\n" + "=" * 60)
  print("PROJECTION / BACK-PROJECTION")
  print("=" * 60)
  
  points = np.array([
    [0.5, 0.2, 1.0],
    [-1.0, 0.4, 0.8],
    [0.05, -0.1, 2.0]
  ])
  for point in points:
    keypoint, jacobian = model.project(point, want_jacobian=True)
    bearing = model.back_project(keypoint)
    angle = np.degrees(np.arccos(np.clip(np.dot(bearing, point / np.linalg.norm(point)), -1.0, 1.0)))
    print(f"Point {point} -> pixel ({keypoint[0]:.2f}, {keypoint[1]:.2f})")
    print(f"  Jacobian:\n{jacobian}")
    print(f"  Back-projected bearing {bearing}, angle to point {angle:.4f}°")


def demonstrate_ray_maps(model):
  """Build a virtual perspective view table and the per-pixel bearing map."""
  print("\n" + "=" * 60)
  print("RAY MAPS")
  print("=" * 60)
  
  ray_maps = OCamRayMaps(model)
  map_x, map_y = ray_maps.get_perspective_maps(output_width=800, output_height=600,
                                               fov_horizontal=100, yaw_offset=15.0)
  valid = np.count_nonzero(map_x >= 0)
  print(f"Perspective maps {map_x.shape}, {valid} valid pixels (use with cv2.remap)")
  
  bearing_map = ray_maps.get_bearing_map()
  print(f"Bearing map {bearing_map.shape}")
  
  # Second request is served from the cache
  ray_maps.get_perspective_maps(output_width=800, output_height=600,
                                fov_horizontal=100, yaw_offset=15.0)
  ray_maps.cache_manager.print_status()


DEFAULT_PARAMETER_FILE = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))),
                                      "config", "ocam_params.txt")


def main(parameter_file=DEFAULT_PARAMETER_FILE):
  model = load_ocam(parameter_file)
  if model is None:
    return 1
  
  print("Loaded OCam model:")
  model.print_params()
  print(f"Intrinsic parameters: {model.get_intrinsic_parameters()}")
  print(f"Distortion parameters: {model.get_distortion_parameters()}")
  
  demonstrate_projection(model)
  demonstrate_ray_maps(model)
  return 0


if __name__ == "__main__":
  sys.exit(main(*sys.argv[1:2]))
