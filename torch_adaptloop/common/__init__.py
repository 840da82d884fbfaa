"""Adaptation loop building blocks."""

from torch_adaptloop.common.adaptation import AdaptLoop
from torch_adaptloop.common.exceptions import AdaptLoopError, ConfigurationError, DimensionError
from torch_adaptloop.common.parameters import AdaptLoopConfig, AdaptLoopPreset, resolve_config

__all__ = ["AdaptLoop",
           "AdaptLoopConfig",
           "AdaptLoopPreset",
           "resolve_config",
           "AdaptLoopError",
           "ConfigurationError",
           "DimensionError"
           ]
