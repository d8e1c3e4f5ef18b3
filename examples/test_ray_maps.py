#!/usr/bin/env python3
"""
Tests for bearing maps and virtual perspective remap tables.
"""

import hashlib
import sys

import numpy as np
import pytest

from omnicam import CacheManager, OCamRayMaps, rotation_from_offsets

from examples.conftest import make_model


def test_bearing_map_matches_back_project(small_ocam_model):
  ray_maps = OCamRayMaps(small_ocam_model)
  bearing_map = ray_maps.get_bearing_map()
  
  assert bearing_map.shape == (48, 64, 3)
  np.testing.assert_allclose(np.linalg.norm(bearing_map, axis=2), 1.0, atol=1e-9)
  for u, v in [(0, 0), (63, 47), (32, 24), (10, 40)]:
    np.testing.assert_allclose(bearing_map[v, u], small_ocam_model.back_project((u, v)))


def test_bearing_map_is_cached(small_ocam_model):
  ray_maps = OCamRayMaps(small_ocam_model)
  first = ray_maps.get_bearing_map()
  second = ray_maps.get_bearing_map()
  
  np.testing.assert_array_equal(first, second)
  assert not second.flags.writeable
  info = ray_maps.get_cache_info()
  assert info['bearing_maps'] == 1
  assert info['total_hits'] == 1


def test_perspective_maps_follow_projection(small_ocam_model):
  ray_maps = OCamRayMaps(small_ocam_model)
  map_x, map_y = ray_maps.get_perspective_maps(output_width=40, output_height=30, fov_horizontal=90.0)
  
  assert map_x.shape == (30, 40)
  assert map_x.dtype == np.float32
  
  # Focal length 20 px: output pixel (30, 10) looks along (0.5, -0.25, 1)
  expected, _ = small_ocam_model.project([0.5, -0.25, 1.0])
  np.testing.assert_allclose([map_x[10, 30], map_y[10, 30]], expected, rtol=1e-6, atol=1e-3)
  
  # The centre of the view lies on the optical axis
  np.testing.assert_allclose([map_x[15, 20], map_y[15, 20]], small_ocam_model.principal_point)


def test_perspective_maps_with_rotation(small_ocam_model):
  ray_maps = OCamRayMaps(small_ocam_model)
  map_x, map_y = ray_maps.get_perspective_maps(output_width=40, output_height=30, fov_horizontal=90.0,
                                               yaw_offset=20.0, pitch_offset=-10.0, roll_offset=5.0)
  ray = rotation_from_offsets(20.0, -10.0, 5.0) @ np.array([0.5, -0.25, 1.0])
  expected, _ = small_ocam_model.project(ray)
  np.testing.assert_allclose([map_x[10, 30], map_y[10, 30]], expected, rtol=1e-6, atol=1e-3)


def test_rays_behind_camera_are_marked_invalid(small_ocam_model):
  ray_maps = OCamRayMaps(small_ocam_model)
  map_x, map_y = ray_maps.get_perspective_maps(output_width=20, output_height=10, yaw_offset=180.0)
  assert np.all(map_x == -1.0)
  assert np.all(map_y == -1.0)


def test_invalid_perspective_arguments(small_ocam_model):
  ray_maps = OCamRayMaps(small_ocam_model)
  with pytest.raises(ValueError):
    ray_maps.get_perspective_maps(output_width=0, output_height=10)
  with pytest.raises(ValueError):
    ray_maps.get_perspective_maps(output_width=10, output_height=10, fov_horizontal=180.0)


def test_shared_cache_separates_models():
  shared_cache = CacheManager()
  first = OCamRayMaps(make_model(image_size=(16, 8), principal_point=(8.0, 4.0)), shared_cache)
  second = OCamRayMaps(make_model(image_size=(16, 8), principal_point=(8.0, 4.0),
                                  distortion=[0.9, 0.1, 0.0]), shared_cache)
  first.get_perspective_maps(output_width=16, output_height=8)
  second.get_perspective_maps(output_width=16, output_height=8)
  
  assert len(shared_cache.get_cache_keys(prefix="perspective_")) == 2
  first.clear_cache()
  assert shared_cache.get_info()['total_cached_maps'] == 0


def test_cache_keys_are_stable_digests(small_ocam_model):
  same_parameters = make_model(image_size=(64, 48), principal_point=(32.0, 24.0), distortion=[1.0, 0.0, 0.0])
  first = OCamRayMaps(small_ocam_model)
  second = OCamRayMaps(same_parameters)
  
  digest = hashlib.sha1(b"".join([
    small_ocam_model.polynomial.tobytes(), small_ocam_model.principal_point.tobytes(),
    small_ocam_model.distortion.tobytes(), small_ocam_model.inverse_polynomial.tobytes()
  ])).hexdigest()[:16]
  assert first._bearing_cache_key() == second._bearing_cache_key()
  assert first._bearing_cache_key().endswith(f"_m{digest}")


if __name__ == "__main__":
  sys.exit(pytest.main([__file__, "-v"]))
