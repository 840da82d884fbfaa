"""
torch_adaptloop: Streaming PyTorch Adaptation Loops
===================================================

A PyTorch implementation of the auditory nerve adaptation loops used by the
CASP family of auditory models (Dau et al. 1996/1997, Püschel 1988,
Breebaart et al. 2001). The loops turn per-channel envelopes from a peripheral
filterbank / inner hair cell stage into adapted signals in model units, with
persistent per-channel state for online, chunk-by-chunk operation.

**Key Features:**
    - Chunk-invariant streaming: any chunking yields the same output
    - Published parameter presets (dau, puschel, breebaart, osses2021)
    - Optional logistic overshoot limiting
    - Hardware-accelerated with PyTorch (CUDA, MPS, CPU)
    - Optional learnable coefficients for gradient-based optimization

**Quick Start:**

    >>> import torch
    >>> import torch_adaptloop
    >>>
    >>> adapt = torch_adaptloop.AdaptLoop(fs=16000, preset='dau')
    >>> envelope = torch.rand(16000, 31) * 1e-2     # (time, channel)
    >>>
    >>> # Feed the signal in 10 ms chunks
    >>> chunks = [adapt(c) for c in torch.split(envelope, 160)]
    >>> adapted = torch.cat(chunks)
    >>>
    >>> # Start over with an unrelated signal
    >>> adapt.reset()

**Package Structure:**

    torch_adaptloop/
    └── common/
        ├── adaptation.py           - AdaptLoop streaming engine
        ├── parameters.py           - Presets and configuration value type
        └── exceptions.py           - ConfigurationError, DimensionError

**Author:**
    Stefano Giacomelli - Ph.D. candidate @ DISIM dpt. - University of L'Aquila

**License:**
    GNU General Public License v3.0 or later (GPLv3+)

**References:**
    - MATLAB Auditory Modeling Toolbox v1.6.0: http://amtoolbox.org/
    - Two!Ears Auditory Front-End: https://github.com/TWOEARS/auditory-front-end

**Version History:**
    - 0.1.0 (2026-10): Initial release
"""

# ============================================================================
# Package Metadata
# ============================================================================

__version__ = "0.1.0"
__author__ = "Stefano Giacomelli"
__email__ = "stefano.giacomelli@graduate.univaq.it"
__license__ = "GPL-3.0-or-later"
__description__ = "Streaming PyTorch adaptation loops for auditory models"

# ============================================================================
# Public API
# ============================================================================

# --- Auditory Nerve Adaptation ---
from torch_adaptloop.common.adaptation import (
    AdaptLoop,                          # Multi-stage streaming adaptation loops
)

# --- Configuration ---
from torch_adaptloop.common.parameters import (
    AdaptLoopConfig,                    # Immutable (limit, minspl, tau) value type
    AdaptLoopPreset,                    # Published parameter sets
    resolve_config,                     # Preset / explicit values -> AdaptLoopConfig
    minspl_to_minlvl,                   # dB re 100 dB SPL -> linear amplitude
    steady_state,                       # Steady-state loop values
)

# --- Errors ---
from torch_adaptloop.common.exceptions import (
    AdaptLoopError,                     # Base class
    ConfigurationError,                 # Invalid configuration
    DimensionError,                     # Malformed input block
)

# ============================================================================
# Package-Level Exports
# ============================================================================

__all__ = [
    "AdaptLoop",
    "AdaptLoopConfig",
    "AdaptLoopPreset",
    "resolve_config",
    "minspl_to_minlvl",
    "steady_state",
    "AdaptLoopError",
    "ConfigurationError",
    "DimensionError",
]

# ============================================================================
# Convenience: Group components by category for easier discovery
# ============================================================================

adaptation = {
    'AdaptLoop': AdaptLoop,
}

presets = {preset.value: preset for preset in AdaptLoopPreset}
