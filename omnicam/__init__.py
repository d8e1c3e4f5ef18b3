"""
Omnidirectional Camera Model Core Modules

This package contains the OCam fisheye camera model and its helpers:
- Camera model with projection, Jacobian and back-projection
- Parameter file loading and saving (plain text and YAML)
- Bearing and perspective ray maps with caching
"""

from .ocam_model import OCamModel, distortion_to_affine_correction
from .ocam_params import (OCamParams, OCamParseError, parse_ocam_params, parse_ocam_params_text,
                          parse_ocam_params_yaml, save_ocam_params, save_ocam_params_yaml,
                          load_ocam, save_ocam)
from .cache_manager import CacheManager
from .ray_maps import OCamRayMaps, rotation_from_offsets

__all__ = [
    'OCamModel',
    'distortion_to_affine_correction',
    'OCamParams',
    'OCamParseError',
    'parse_ocam_params',
    'parse_ocam_params_text',
    'parse_ocam_params_yaml',
    'save_ocam_params',
    'save_ocam_params_yaml',
    'load_ocam',
    'save_ocam',
    'CacheManager',
    'OCamRayMaps',
    'rotation_from_offsets'
]
