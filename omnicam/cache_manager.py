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

import numpy as np
import threading
import time
from collections import OrderedDict
from typing import Dict, Tuple, Optional, Any

MAP_PREFIXES = ('bearing_', 'perspective_')


def _entry_nbytes(arrays: Tuple[np.ndarray, ...]) -> int:
  return sum(array.nbytes for array in arrays)


class CacheManager:
  """
  Thread-safe LRU cache for generated ray maps.
  
  Entries are tuples of numpy arrays stored under string keys. Keys carry a
  prefix naming the kind of map ('bearing_' or 'perspective_'), which is used
  for the per-kind statistics.
  """
  
  def __init__(self, max_memory_mb: Optional[float] = None):
    """
    Parameters:
    - max_memory_mb: Optional maximum memory usage in MB. If None, no limit is enforced.
    """
    self._cache: 'OrderedDict[str, Tuple[Tuple[np.ndarray, ...], float]]' = OrderedDict()
    self._max_memory_mb = max_memory_mb
    self._lock = threading.RLock()
    self._access_count = 0
    self._hit_count = 0
    self._eviction_count = 0
  
  def get(self, cache_key: str) -> Optional[Tuple[np.ndarray, ...]]:
    """
    Retrieve a cached entry and mark it most recently used.
    
    Returns:
    - Tuple of arrays if found, None otherwise
    """
    with self._lock:
      self._access_count += 1
      
      if cache_key in self._cache:
        arrays, _ = self._cache[cache_key]
        self._cache[cache_key] = (arrays, time.time())
        self._cache.move_to_end(cache_key)
        self._hit_count += 1
        return arrays
      
      return None
  
  def put(self, cache_key: str, *arrays: np.ndarray) -> bool:
    """
    Store arrays under a key, evicting least recently used entries when over the limit.
    
    Stored arrays are copies marked read-only, so callers sharing a cache cannot
    modify each other's maps.
    
    Returns:
    - True if stored, False if the entry alone exceeds the memory limit
    """
    stored = []
    for array in arrays:
      copy = np.array(array, copy=True)
      copy.setflags(write=False)
      stored.append(copy)
    stored = tuple(stored)
    new_memory_mb = _entry_nbytes(stored) / (1024 * 1024)
    
    with self._lock:
      if cache_key in self._cache:
        del self._cache[cache_key]
      
      if self._max_memory_mb is not None:
        current_memory = self._calculate_total_memory_mb()
        
        while current_memory + new_memory_mb > self._max_memory_mb and len(self._cache) > 0:
          lru_key, (lru_arrays, _) = self._cache.popitem(last=False)
          freed_memory = _entry_nbytes(lru_arrays) / (1024 * 1024)
          current_memory -= freed_memory
          self._eviction_count += 1
          print(f"LRU evicted: {lru_key} (freed {freed_memory:.1f} MB)")
        
        if current_memory + new_memory_mb > self._max_memory_mb:
          print(f"Warning: Cannot add cache entry - exceeds memory limit even after eviction "
                f"({self._max_memory_mb:.1f} MB)")
          return False
      
      self._cache[cache_key] = (stored, time.time())
      return True
  
  def remove(self, cache_key: str) -> bool:
    """Remove one entry; returns True if it was present."""
    with self._lock:
      if cache_key in self._cache:
        del self._cache[cache_key]
        return True
      return False
  
  def clear(self) -> None:
    with self._lock:
      self._cache.clear()
  
  def contains(self, cache_key: str) -> bool:
    with self._lock:
      return cache_key in self._cache
  
  def get_info(self) -> Dict[str, Any]:
    """
    Get cache statistics.
    
    Returns:
    - Dictionary with entry counts per map kind, memory usage and access statistics
    """
    with self._lock:
      total_memory_bytes = 0
      counts = {prefix: 0 for prefix in MAP_PREFIXES}
      
      for key, (arrays, _) in self._cache.items():
        total_memory_bytes += _entry_nbytes(arrays)
        for prefix in MAP_PREFIXES:
          if key.startswith(prefix):
            counts[prefix] += 1
      
      return {
        'total_cached_maps': len(self._cache),
        'bearing_maps': counts['bearing_'],
        'perspective_maps': counts['perspective_'],
        'memory_usage_bytes': total_memory_bytes,
        'memory_usage_mb': total_memory_bytes / (1024 * 1024),
        'max_memory_mb': self._max_memory_mb,
        'memory_limit_enabled': self._max_memory_mb is not None,
        'total_accesses': self._access_count,
        'total_hits': self._hit_count,
        'total_evictions': self._eviction_count
      }
  
  def print_status(self) -> None:
    """Print current cache status in a human-readable format."""
    info = self.get_info()
    print(f"Cache status: {info['total_cached_maps']} maps "
          f"({info['bearing_maps']} bearing, {info['perspective_maps']} perspective), "
          f"{info['memory_usage_mb']:.1f} MB")
    
    if info['memory_limit_enabled']:
      usage_percent = (info['memory_usage_mb'] / info['max_memory_mb']) * 100
      print(f"Cache memory usage: {usage_percent:.1f}% of {info['max_memory_mb']:.1f} MB limit")
  
  def _calculate_total_memory_mb(self) -> float:
    total_bytes = 0
    for arrays, _ in self._cache.values():
      total_bytes += _entry_nbytes(arrays)
    return total_bytes / (1024 * 1024)
  
  def get_cache_keys(self, prefix: Optional[str] = None) -> list:
    """All cache keys, optionally filtered by prefix."""
    with self._lock:
      if prefix is None:
        return list(self._cache.keys())
      return [key for key in self._cache.keys() if key.startswith(prefix)]
  
  def get_lru_order(self) -> list:
    """Cache keys ordered from least to most recently used."""
    with self._lock:
      return list(self._cache.keys())
