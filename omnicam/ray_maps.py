"""
MIT License

Copyright (c) 2025 Pan Yu

Permission is hereby granted, free of charge, to any person obtaining a copy
of this software and associated documentation files (the "Software"), to deal
in the Software without restriction, including without limitation the rights
to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
copies of the Software, and to permit persons to whom the Software is
furnished to do so, subject to the following conditions:

The above copyright notice and this permission notice shall be included in all
copies or substantial portions of the Software.

THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
SOFTWARE.

Author: Pan Yu
"""

import hashlib
import multiprocessing
import time
import numpy as np
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Optional, Tuple, Any

from .cache_manager import CacheManager
from .ocam_model import OCamModel


def rotation_from_offsets(yaw_offset: float, pitch_offset: float, roll_offset: float) -> np.ndarray:
  """
  Combined rotation of a virtual camera, applied in the order roll, pitch, yaw.
  
  Parameters:
  - yaw_offset: rotation around the Y axis in degrees
  - pitch_offset: rotation around the X axis in degrees
  - roll_offset: rotation around the Z (optical) axis in degrees
  
  Returns:
  3x3 rotation matrix.
  """
  yaw_rad = np.radians(yaw_offset)
  pitch_rad = np.radians(pitch_offset)
  roll_rad = np.radians(roll_offset)
  
  R_yaw = np.array([
    [np.cos(yaw_rad), 0, np.sin(yaw_rad)],
    [0, 1, 0],
    [-np.sin(yaw_rad), 0, np.cos(yaw_rad)]
  ])
  
  R_pitch = np.array([
    [1, 0, 0],
    [0, np.cos(pitch_rad), np.sin(pitch_rad)],
    [0, -np.sin(pitch_rad), np.cos(pitch_rad)]
  ])
  
  R_roll = np.array([
    [np.cos(roll_rad), -np.sin(roll_rad), 0],
    [np.sin(roll_rad), np.cos(roll_rad), 0],
    [0, 0, 1]
  ])
  
  return R_yaw @ R_pitch @ R_roll


def _thread_layout(row_count: int) -> Tuple[int, int]:
  num_cores = min(multiprocessing.cpu_count(), 8)  # Cap at 8 threads to avoid overhead
  min_chunk_size = 32
  chunk_size = max(min_chunk_size, row_count // (num_cores * 2))
  return num_cores, chunk_size


class OCamRayMaps:
  """
  Per-pixel ray tables for an OCam camera.
  
  Builds the bearing vector of every image pixel, and remap tables (map_x, map_y)
  that resample the fisheye image into a virtual pinhole view. The tables are
  plain arrays suitable for cv2.remap; images themselves are not touched here.
  Generated tables are kept in a CacheManager, which can be shared between
  several instances.
  """
  
  def __init__(self, model: OCamModel, cache_manager: Optional[CacheManager] = None):
    """
    Parameters:
    - model: OCamModel to generate rays for
    - cache_manager: Optional shared cache manager. If None, creates a new one.
    """
    self.model = model
    self.cache_manager = cache_manager if cache_manager is not None else CacheManager()
    
    # Identifies the model parameters inside keys of a shared cache
    self._model_tag = hashlib.sha1(b"".join([
      model.polynomial.tobytes(), model.principal_point.tobytes(),
      model.distortion.tobytes(), model.inverse_polynomial.tobytes()
    ])).hexdigest()[:16]
  
  def _bearing_cache_key(self) -> str:
    width, height = self.model.get_image_size()
    cx, cy = self.model.principal_point
    return f"bearing_{width}x{height}_cx{cx:.3f}_cy{cy:.3f}_m{self._model_tag}"
  
  def _perspective_cache_key(self, output_width: int, output_height: int, fov_horizontal: float,
                             yaw_offset: float, pitch_offset: float, roll_offset: float,
                             allow_behind_camera: bool) -> str:
    behind_key = "behind_ok" if allow_behind_camera else "behind_skip"
    return (f"perspective_{output_width}x{output_height}_fovh{fov_horizontal:.1f}"
            f"_yaw{yaw_offset:.3f}_pitch{pitch_offset:.3f}_roll{roll_offset:.3f}"
            f"_{behind_key}_m{self._model_tag}")
  
  def _bearing_row_chunk(self, row_start: int, row_end: int, width: int) -> np.ndarray:
    u_coords, v_coords = np.meshgrid(
      np.arange(width, dtype=np.float64),
      np.arange(row_start, row_end, dtype=np.float64)
    )
    keypoints = np.column_stack([u_coords.ravel(), v_coords.ravel()])
    bearings = self.model.back_project_points(keypoints)
    return bearings.reshape(row_end - row_start, width, 3)
  
  def get_bearing_map(self) -> np.ndarray:
    """
    Bearing vector of every pixel of the model's image.
    
    Returns:
    - array of shape (height, width, 3); entry [v, u] is back_project((u, v))
    """
    cache_key = self._bearing_cache_key()
    cached = self.cache_manager.get(cache_key)
    if cached is not None:
      print(f"Using cached bearing map: {cache_key}")
      return cached[0]
    
    start_time = time.time()
    width, height = self.model.get_image_size()
    num_cores, chunk_size = _thread_layout(height)
    print(f"Generating bearing map for camera: {width}x{height}")
    
    bearing_map = np.empty((height, width, 3), dtype=np.float64)
    chunks = [(start, min(start + chunk_size, height)) for start in range(0, height, chunk_size)]
    with ThreadPoolExecutor(max_workers=num_cores) as executor:
      futures = {
        executor.submit(self._bearing_row_chunk, start, end, width): (start, end)
        for start, end in chunks
      }
      for future, (start, end) in futures.items():
        bearing_map[start:end] = future.result()
    
    generation_time = time.time() - start_time
    print(f"\033[33mBearing map generation processing time: {generation_time:.4f} seconds\033[0m")
    
    self.cache_manager.put(cache_key, bearing_map)
    return bearing_map
  
  def _perspective_row_chunk(self, row_start: int, row_end: int, output_width: int,
                             virtual_f: float, virtual_cx: float, virtual_cy: float,
                             R_combined: np.ndarray,
                             allow_behind_camera: bool) -> Tuple[np.ndarray, np.ndarray]:
    chunk_height = row_end - row_start
    u_coords, v_coords = np.meshgrid(
      np.arange(output_width, dtype=np.float64),
      np.arange(row_start, row_end, dtype=np.float64)
    )
    
    rays = np.stack([
      ((u_coords - virtual_cx) / virtual_f).ravel(),
      ((v_coords - virtual_cy) / virtual_f).ravel(),
      np.ones(u_coords.size)
    ], axis=1)
    rays = rays @ R_combined.T
    
    map_x_chunk = np.full(u_coords.size, -1.0, dtype=np.float32)
    map_y_chunk = np.full(u_coords.size, -1.0, dtype=np.float32)
    
    valid_mask = np.ones(u_coords.size, dtype=bool) if allow_behind_camera else rays[:, 2] > 0
    if np.any(valid_mask):
      keypoints, _ = self.model.project_points(rays[valid_mask])
      
      # Rays exactly on the optical axis have no azimuth; they land on the principal point
      on_axis = (rays[valid_mask, 0] == 0) & (rays[valid_mask, 1] == 0)
      keypoints[on_axis] = self.model.principal_point
      
      finite = np.all(np.isfinite(keypoints), axis=1)
      keypoints[~finite] = -1.0
      map_x_chunk[valid_mask] = keypoints[:, 0]
      map_y_chunk[valid_mask] = keypoints[:, 1]
    
    return (map_x_chunk.reshape(chunk_height, output_width),
            map_y_chunk.reshape(chunk_height, output_width))
  
  def get_perspective_maps(self, output_width: int = 1024, output_height: int = 768,
                           fov_horizontal: float = 90.0, yaw_offset: float = 0.0,
                           pitch_offset: float = 0.0, roll_offset: float = 0.0,
                           allow_behind_camera: bool = False) -> Tuple[np.ndarray, np.ndarray]:
    """
    Remap tables for a virtual pinhole view of the fisheye image.
    
    Parameters:
    - output_width, output_height: size of the virtual view
    - fov_horizontal: horizontal field of view of the virtual camera in degrees
    - yaw_offset, pitch_offset, roll_offset: virtual camera rotation in degrees
    - allow_behind_camera: if True, also project rays with z <= 0
    
    Returns:
    - map_x, map_y: float32 arrays of shape (output_height, output_width) giving the
      fisheye pixel for each output pixel, -1 where no valid pixel exists
    """
    if output_width <= 0 or output_height <= 0:
      raise ValueError(f"Invalid output dimensions: {output_width}x{output_height}")
    if not (0 < fov_horizontal < 180):
      raise ValueError(f"Horizontal FOV must be in (0, 180) degrees, got {fov_horizontal}")
    
    cache_key = self._perspective_cache_key(output_width, output_height, fov_horizontal,
                                            yaw_offset, pitch_offset, roll_offset,
                                            allow_behind_camera)
    cached = self.cache_manager.get(cache_key)
    if cached is not None:
      print(f"Using cached perspective maps: {cache_key}")
      return cached[0], cached[1]
    
    start_time = time.time()
    
    virtual_f = (output_width / 2.0) / np.tan(np.radians(fov_horizontal) / 2.0)
    virtual_cx = output_width / 2.0
    virtual_cy = output_height / 2.0
    R_combined = rotation_from_offsets(yaw_offset, pitch_offset, roll_offset)
    num_cores, chunk_size = _thread_layout(output_height)
    
    print(f"Generating perspective maps: {output_width}x{output_height}")
    print(f"Virtual camera FOV: {fov_horizontal}°, focal length {virtual_f:.1f}")
    print(f"Rotation: yaw={yaw_offset}°, pitch={pitch_offset}°, roll={roll_offset}°")
    
    map_x = np.empty((output_height, output_width), dtype=np.float32)
    map_y = np.empty((output_height, output_width), dtype=np.float32)
    chunks = [(start, min(start + chunk_size, output_height))
              for start in range(0, output_height, chunk_size)]
    with ThreadPoolExecutor(max_workers=num_cores) as executor:
      futures = {
        executor.submit(self._perspective_row_chunk, start, end, output_width,
                        virtual_f, virtual_cx, virtual_cy, R_combined,
                        allow_behind_camera): (start, end)
        for start, end in chunks
      }
      for future, (start, end) in futures.items():
        map_x[start:end], map_y[start:end] = future.result()
    
    generation_time = time.time() - start_time
    print(f"\033[33mPerspective map generation processing time: {generation_time:.4f} seconds\033[0m")
    
    self.cache_manager.put(cache_key, map_x, map_y)
    return map_x, map_y
  
  def clear_cache(self):
    """Clear every cached map held by this instance's cache manager."""
    self.cache_manager.clear()
  
  def get_cache_info(self) -> Dict[str, Any]:
    return self.cache_manager.get_info()
