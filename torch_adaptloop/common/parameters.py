"""
Adaptation Loop Parameters
==========================

Author:
    Stefano Giacomelli - Ph.D. candidate @ DISIM dpt. - University of L'Aquila

License:
    GNU General Public License v3.0 or later (GPLv3+)

Configuration value types for the adaptation loops. A configuration is the triple
(overshoot limit, minimum level, time constants); it is either taken from one of the
published parameter sets (:class:`AdaptLoopPreset`) or given explicitly.

The level convention follows the AMT: a signal amplitude of 1 corresponds to
100 dB SPL, so a minimum level of ``minspl`` dB maps to the linear amplitude
:math:`10^{(\\text{minspl} - 100)/20}`.

References
----------
.. [1] T. Dau, D. Püschel, and A. Kohlrausch, "A quantitative model of the
       'effective' signal processing in the auditory system. I. Model structure,"
       *J. Acoust. Soc. Am.*, vol. 99, no. 6, pp. 3615-3622, 1996.

.. [2] D. Püschel, "Prinzipien der zeitlichen Analyse beim Hören,"
       Ph.D. dissertation, Universität Göttingen, Germany, 1988.

.. [3] J. Breebaart, S. van de Par, and A. Kohlrausch, "Binaural processing model
       based on contralateral inhibition. I. Model structure,"
       *J. Acoust. Soc. Am.*, vol. 110, no. 2, pp. 1074-1088, 2001.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import torch

from torch_adaptloop.common.exceptions import ConfigurationError

# ------------------------------------------------- Constants ------------------------------------------------

# Signal amplitude 1 corresponds to 100 dB SPL (Jepsen et al. 2008 calibration)
DB_SPL_CAL = 100.0

DAU_TAU = (0.005, 0.050, 0.129, 0.253, 0.500)
LINEAR_TAU = tuple(float(t) for t in np.linspace(0.005, 0.5, 5))

TauLike = Union[Sequence[float], torch.Tensor, np.ndarray]

# ------------------------------------------------- Presets --------------------------------------------------

class AdaptLoopPreset(Enum):
    """
    Published adaptation loop parameter sets.

    ``CUSTOM`` marks a configuration built from raw values.
    """
    DAU = 'dau'
    PUSCHEL = 'puschel'
    BREEBAART = 'breebaart'
    OSSES2021 = 'osses2021'
    CUSTOM = 'custom'

    @classmethod
    def from_name(cls, name: Union[str, 'AdaptLoopPreset']) -> 'AdaptLoopPreset':
        """
        Look up a preset by name.

        Names are case-insensitive and may carry the AMT ``adt_`` prefix
        (``'adt_dau'``, ``'adt_puschel'``, ``'adt_breebaart'``). ``'dau1997'`` is
        accepted as an alias of ``'dau'``.

        Raises
        ------
        ConfigurationError
            If ``name`` does not match any preset.
        """
        if isinstance(name, cls):
            return name
        if not isinstance(name, str):
            raise ConfigurationError(f"Preset must be a string, got {type(name).__name__}")

        key = name.strip().lower()
        if key.startswith('adt_'):
            key = key[len('adt_'):]
        if key == 'dau1997':
            key = 'dau'

        for preset in cls:
            if preset.value == key:
                return preset

        choices = ", ".join(f"'{p.value}'" for p in cls)
        raise ConfigurationError(f"Unknown preset '{name}'. Choose from: {choices}")


# (limit, minspl, tau) per preset
_PRESET_VALUES = {
    AdaptLoopPreset.DAU: (10.0, 0.0, DAU_TAU),
    AdaptLoopPreset.PUSCHEL: (0.0, 0.0, LINEAR_TAU),
    AdaptLoopPreset.BREEBAART: (10.0, 0.0, LINEAR_TAU),
    AdaptLoopPreset.OSSES2021: (5.0, 0.0, DAU_TAU),
    # Raw values default to the Dau et al. parameters
    AdaptLoopPreset.CUSTOM: (10.0, 0.0, DAU_TAU),
}

# --------------------------------------------------- Utilities ---------------------------------------------------

def minspl_to_minlvl(minspl: float) -> float:
    """Convert a level in dB (re 100 dB SPL == amplitude 1) to a linear amplitude."""
    return 10.0 ** ((minspl - DB_SPL_CAL) / 20.0)


def steady_state(minlvl: float, num_loops: int) -> Tuple[float, ...]:
    r"""
    Steady-state values of the loop cascade under a constant input ``minlvl``.

    Each loop settles to the square root of its input, hence
    :math:`s_k = \text{minlvl}^{1/2^k}` for :math:`k = 1 \ldots K`.
    """
    state = []
    value = minlvl
    for _ in range(num_loops):
        value = math.sqrt(value)
        state.append(value)
    return tuple(state)


def _as_finite_scalar(value: Any, name: str) -> float:
    try:
        tensor = torch.as_tensor(value, dtype=torch.float64)
    except (TypeError, ValueError, RuntimeError) as err:
        raise ConfigurationError(f"'{name}' must be a real scalar, got {value!r}") from err
    if isinstance(value, bool) or tensor.numel() != 1:
        raise ConfigurationError(f"'{name}' must be a real scalar, got {value!r}")
    scalar = float(tensor.item())
    if not math.isfinite(scalar):
        raise ConfigurationError(f"'{name}' must be finite, got {scalar}")
    return scalar


def _as_tau(tau: TauLike) -> Tuple[float, ...]:
    if isinstance(tau, torch.Tensor):
        tensor = tau.detach().to(device='cpu', dtype=torch.float64)
    else:
        try:
            tensor = torch.as_tensor(tau, dtype=torch.float64)
        except (TypeError, ValueError, RuntimeError) as err:
            raise ConfigurationError(f"'tau' must be a vector with positive values, got {tau!r}") from err
    if tensor.ndim == 0:
        tensor = tensor.reshape(1)
    if tensor.ndim != 1 or tensor.numel() == 0:
        raise ConfigurationError(f"'tau' must be a non-empty vector, got shape {tuple(tensor.shape)}")
    if not torch.isfinite(tensor).all() or (tensor <= 0).any():
        raise ConfigurationError(f"'tau' must be a vector with positive values, got {tensor.tolist()}")
    return tuple(float(t) for t in tensor.tolist())


def validate_fs(fs: Any) -> float:
    """Validate a sampling rate in Hz and return it as a float."""
    fs = _as_finite_scalar(fs, 'fs')
    if fs <= 0:
        raise ConfigurationError(f"'fs' must be positive, got {fs}")
    return fs

# ------------------------------------------------- Configuration -------------------------------------------------

@dataclass(frozen=True)
class AdaptLoopConfig:
    r"""
    Immutable adaptation loop configuration.

    Two configurations are equal when ``limit``, ``minspl`` and ``tau`` match
    exactly; ``preset`` only records where the values came from.

    Parameters
    ----------
    limit : float
        Overshoot limit. Values :math:`\leq 1` disable overshoot limiting.

    minspl : float
        Minimum level in dB re 100 dB SPL.

    tau : tuple of float
        Loop time constants in seconds, one per loop, in processing order.

    preset : AdaptLoopPreset
        Originating parameter set. Default: ``AdaptLoopPreset.CUSTOM``.
    """
    limit: float
    minspl: float
    tau: Tuple[float, ...]
    preset: AdaptLoopPreset = field(default=AdaptLoopPreset.CUSTOM, compare=False)

    def __post_init__(self):
        object.__setattr__(self, 'limit', _as_finite_scalar(self.limit, 'limit'))
        object.__setattr__(self, 'minspl', _as_finite_scalar(self.minspl, 'minspl'))
        object.__setattr__(self, 'tau', _as_tau(self.tau))

        # corr == 1 here, the output scaling divides by zero
        if self.minspl == DB_SPL_CAL:
            raise ConfigurationError(
                f"'minspl' must differ from {DB_SPL_CAL:.0f} dB (full scale), got {self.minspl}")

        # A zero ceiling makes the logistic exponent -2/maxvalue undefined
        if self.overshoot_limiting and 0.0 in self.maxvalue:
            loop = self.maxvalue.index(0.0) + 1
            raise ConfigurationError(
                f"Overshoot limit {self.limit} yields a zero ceiling in loop {loop}")

    @property
    def num_loops(self) -> int:
        return len(self.tau)

    @property
    def minlvl(self) -> float:
        """Minimum level as a linear amplitude."""
        return minspl_to_minlvl(self.minspl)

    @property
    def overshoot_limiting(self) -> bool:
        return self.limit > 1.0

    @property
    def init_state(self) -> Tuple[float, ...]:
        """Steady-state value of every loop, used to seed the channel state."""
        return steady_state(self.minlvl, self.num_loops)

    @property
    def maxvalue(self) -> Tuple[float, ...]:
        """Per-loop overshoot ceiling derived from the nominal steady state."""
        return tuple((1.0 - s * s) * self.limit - 1.0 for s in self.init_state)

    def coefficients(self, fs: float) -> Tuple[Tuple[float, ...], Tuple[float, ...]]:
        """
        RC lowpass coefficients ``(a1, b0)`` of the loop recursions at rate ``fs``.

        Recursion: :math:`y(n) = b_0 x(n) + a_1 y(n-1)` with
        :math:`a_1 = e^{-1/(\\tau f_s)}` and :math:`b_0 = 1 - a_1`.
        """
        a1 = tuple(math.exp(-1.0 / (t * fs)) for t in self.tau)
        b0 = tuple(1.0 - a for a in a1)
        return a1, b0

    def output_scaling(self) -> Tuple[float, float]:
        """``(corr, mult)`` mapping the last loop output onto 0-100 model units."""
        corr = self.minlvl ** (1.0 / (2 ** self.num_loops))
        mult = 100.0 / (1.0 - corr)
        return corr, mult

    def matches(self, limit: float, minspl: float, tau: TauLike) -> bool:
        """Exact comparison against raw values. A tau length mismatch is ``False``."""
        tau = tuple(float(t) for t in torch.as_tensor(tau, dtype=torch.float64).reshape(-1).tolist())
        if len(tau) != self.num_loops:
            return False
        return float(limit) == self.limit and float(minspl) == self.minspl and tau == self.tau

    @classmethod
    def from_mapping(cls, params: Mapping[str, Any]) -> 'AdaptLoopConfig':
        """
        Build a configuration from a dict-style parameter set.

        Accepts ``limit`` / ``minspl`` / ``tau`` keys, their AMT names
        ``overshootLimit`` / ``minLeveldB``, and an optional ``preset``.
        """
        return resolve_config(preset=params.get('preset'),
                              limit=lookup_parameter(params, 'limit'),
                              minspl=lookup_parameter(params, 'minspl'),
                              tau=params.get('tau'))


# Alternative key names of a dict-style parameter set
PARAMETER_ALIASES = {
    'limit': ('limit', 'overshootLimit', 'overshoot_limit'),
    'minspl': ('minspl', 'minLeveldB', 'minLevelDb', 'min_level_db'),
    'tau': ('tau',),
}


def lookup_parameter(params: Mapping[str, Any], name: str) -> Optional[Any]:
    for key in PARAMETER_ALIASES[name]:
        if key in params:
            return params[key]
    return None


def resolve_config(preset: Optional[Union[str, AdaptLoopPreset]] = None,
                   limit: Optional[float] = None,
                   minspl: Optional[float] = None,
                   tau: Optional[TauLike] = None) -> AdaptLoopConfig:
    """
    Resolve a preset and/or explicit values into a validated configuration.

    Explicit ``limit``, ``minspl`` and ``tau`` override the preset's values.
    Without a preset the missing values default to Dau et al. (1997).

    Examples
    --------
    >>> cfg = resolve_config('adt_puschel')
    >>> cfg.limit, cfg.minspl, cfg.num_loops
    (0.0, 0.0, 5)
    >>> resolve_config(limit=0, tau=[0.005]).tau
    (0.005,)

    Raises
    ------
    ConfigurationError
        On an unknown preset or any invalid value.
    """
    preset = AdaptLoopPreset.CUSTOM if preset is None else AdaptLoopPreset.from_name(preset)
    default_limit, default_minspl, default_tau = _PRESET_VALUES[preset]

    return AdaptLoopConfig(limit=default_limit if limit is None else limit,
                           minspl=default_minspl if minspl is None else minspl,
                           tau=default_tau if tau is None else tau,
                           preset=preset)
