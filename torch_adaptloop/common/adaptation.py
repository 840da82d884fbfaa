"""
Auditory Nerve Adaptation Loops
================================

Author:
    Stefano Giacomelli - Ph.D. candidate @ DISIM dpt. - University of L'Aquila

License:
    GNU General Public License v3.0 or later (GPLv3+)

This module implements the non-linear adaptation stage that models the dynamic
response properties of auditory nerve fibers: a cascade of division / RC-lowpass
feedback loops with optional logistic overshoot limiting.

Unlike a one-shot filter, :class:`AdaptLoop` keeps the state of every loop for
every frequency channel between calls. A signal can therefore be fed in chunks of
any length (down to a single sample) and the concatenated output is identical to
the output obtained by processing the whole signal at once.

References
----------

.. [1] P. Majdak, C. Hollomey, and R. Baumgartner, "AMT 1.x: A toolbox for
       reproducible research in auditory modeling," *Acta Acustica*, vol. 6,
       p. 19, 2022, doi: 10.1051/aacus/2022011.

.. [2] T. May, "Two! Ears Auditory Front-End," adaptation loop processor,
       2015. [Online]. Available: https://github.com/TWOEARS/auditory-front-end
"""

import logging
from typing import Any, List, Mapping, Optional, Tuple, Union

import torch
import torch.nn as nn

from torch_adaptloop.common.exceptions import ConfigurationError, DimensionError
from torch_adaptloop.common.parameters import (AdaptLoopConfig, AdaptLoopPreset, TauLike,
                                               lookup_parameter, resolve_config, validate_fs)

logger = logging.getLogger(__name__)

# Linear gain (+50 dB) applied ahead of the expansion behind a DRNL filterbank
DRNL_GAIN = 10.0 ** (50.0 / 20.0)

# -------------------------------------------------- Utilities ----------------------------------------------------

@torch.jit.script
def _adapt_loop_core_jit(x: torch.Tensor,
                         state: torch.Tensor,
                         a1: torch.Tensor,
                         b0: torch.Tensor,
                         minlvl: float,
                         limit: float,
                         factor: torch.Tensor,
                         expfac: torch.Tensor,
                         offset: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
    r"""
    JIT-compiled core adaptation loop.

    Time-sequential recursion over one chunk. Channels are processed in parallel,
    samples strictly in order since every loop state depends on the previous sample.

    Parameters
    ----------
    x : torch.Tensor
        Input chunk, shape :math:`(T, F)`.

    state : torch.Tensor
        Loop states at the start of the chunk, shape :math:`(F, \text{num_loops})`.

    a1 : torch.Tensor
        RC filter pole coefficients, shape :math:`(\text{num_loops},)`.

    b0 : torch.Tensor
        RC filter zero coefficients, shape :math:`(\text{num_loops},)`.

    minlvl : float
        Minimum level (linear amplitude) the input is floored to.

    limit : float
        Overshoot limit factor. Limiting is applied only when ``limit > 1``.

    factor, expfac, offset : torch.Tensor
        Logistic overshoot limiting constants, shape :math:`(\text{num_loops},)`.

    Returns
    -------
    tuple of torch.Tensor
        Unscaled output of the last loop, shape :math:`(T, F)`, and the loop
        states after the last sample, shape :math:`(F, \text{num_loops})`.
    """
    siglen = x.shape[0]
    num_loops = a1.shape[0]

    loop_state = [state[:, k] for k in range(num_loops)]
    output: List[torch.Tensor] = []

    # fmax: a NaN sample is floored to minlvl instead of poisoning the state
    floor = torch.tensor(minlvl, dtype=x.dtype, device=x.device)

    for t in range(siglen):
        tmp = torch.fmax(x[t], floor)

        for k in range(num_loops):
            # Divide by state
            tmp = tmp / loop_state[k]

            # Overshoot limiting
            if limit > 1.0:
                limited = factor[k] / (1.0 + torch.exp(expfac[k] * (tmp - 1.0))) - offset[k]
                tmp = torch.where(tmp > 1.0, limited, tmp)

            # Update state with RC lowpass
            loop_state[k] = a1[k] * loop_state[k] + b0[k] * tmp

        output.append(tmp)

    return torch.stack(output, dim=0), torch.stack(loop_state, dim=1)

# ---------------------------------------------------- Main -------------------------------------------------------

class AdaptLoop(nn.Module):
    r"""
    Streaming adaptation loops for auditory nerve fiber dynamics.

    Implements the cascade of non-linear adaptation loops of the CASP model
    family. Each loop divides its input by its own lowpass-filtered output, which
    yields a compressive, approximately logarithmic stationary response and a
    strong onset (overshoot) for sudden level increases.

    The module is a chunk processor: the loop state of every channel persists
    across calls, so any split of a signal into consecutive chunks gives the same
    output as processing it in one call. Use :meth:`reset` between unrelated
    signals.

    Algorithm Overview
    ------------------
    For each time sample and adaptation loop :math:`k`:

    1. **Clamp input**: :math:`x(t) = \max(x(t), \text{minlvl})` (NaN samples become ``minlvl``)
    2. **Division normalization**: :math:`y_k(t) = x(t) / s_k(t)`
    3. **Overshoot limiting** (if ``limit > 1``):

       .. math::
           y_k(t) = \begin{cases}
               \frac{2m_k}{1 + \exp(-2(y_k - 1)/m_k)} - (m_k - 1), & \text{if } y_k > 1 \\
               y_k, & \text{otherwise}
           \end{cases}

       where :math:`m_k = (1 - \bar{s}_k^2) \cdot \text{limit} - 1` is derived
       from the nominal steady state :math:`\bar{s}_k`, never from the live state.

    4. **State update** (RC lowpass):

       .. math::
           s_k(t) = a_k \cdot s_k(t-1) + b_k \cdot y_k(t)

       with :math:`a_k = \exp(-1/(\tau_k f_s))` and :math:`b_k = 1 - a_k`

    5. **Output scaling**: :math:`\text{out}(t) = (y_K(t) - c) \cdot m`
       where :math:`c = \text{minlvl}^{1/2^K}` and :math:`m = 100/(1-c)`

    The state of a channel is seeded with the steady state
    :math:`\bar{s}_k = \text{minlvl}^{1/2^k}` the first time the channel is seen.

    Parameters
    ----------
    fs : float
        Sampling rate in Hz.

    tau : sequence of float or torch.Tensor, optional
        Time constants for adaptation loops in seconds, shape ``(n_loops,)``.
        The number of loops equals the length of ``tau``.
        Default: ``[0.005, 0.050, 0.129, 0.253, 0.500]`` (Dau et al. 1997).

    limit : float, optional
        Overshoot limit factor. Values ``> 1`` enable limiting of rapid increases.
        Default: 10.0 (Dau et al. 1997).

    minspl : float, optional
        Minimum level in dB re 100 dB SPL (signal amplitude 1 == 100 dB SPL).
        Default: 0.0 dB, i.e. a linear floor of ``1e-5``.

    preset : {'dau', 'puschel', 'breebaart', 'osses2021', 'custom'}, optional
        Published parameter set, see :class:`AdaptLoopPreset`. The AMT names
        ``'adt_dau'``, ``'adt_puschel'`` and ``'adt_breebaart'`` are accepted:

        - **'dau'**: 5 exponentially spaced loops, ``limit = 10``
        - **'puschel'**: 5 linearly spaced loops, no overshoot limiting
        - **'breebaart'**: as ``'puschel'`` with ``limit = 10``
        - **'osses2021'**: as ``'dau'`` with ``limit = 5``

        Explicitly passed ``tau``, ``limit`` or ``minspl`` override the preset.
        Default: ``None`` (explicit values, Dau et al. defaults).

    expand_drnl : bool, optional
        If ``True``, each chunk is amplified by 50 dB and squared before
        adaptation. This fits the loops' operating point when the upstream stage
        is a DRNL filterbank rather than a gammatone filterbank. Default: ``False``.

    learnable : bool, optional
        If ``True``, the RC coefficients ``a1``, ``b0`` and the output scaling
        ``corr``, ``mult`` become ``nn.Parameter``. The state carried between
        chunks is detached from the graph. Default: ``False``.

    dtype : torch.dtype, optional
        Data type for computations. Default: ``torch.float32``.

    Attributes
    ----------
    config : AdaptLoopConfig
        Current configuration (limit, minspl, tau).

    fs : float
        Sampling rate in Hz.

    num_loops : int
        Number of adaptation loops (length of ``tau``).

    a1, b0 : torch.Tensor
        RC lowpass coefficients, shape ``(num_loops,)``.

    init_state : torch.Tensor
        Steady-state values used to seed new channels, shape ``(num_loops,)``.

    corr, mult : torch.Tensor
        Output offset and multiplier mapping onto 0-100 model units.

    channel_state : torch.Tensor or None
        Loop states, shape ``(num_channels, num_loops)``; ``None`` until the first
        chunk has been processed.

    Shape
    -----
    - Input: :math:`(T, F)` where
        * :math:`T` = time samples (chunk length, may be 1)
        * :math:`F` = frequency channels
    - Output: Same shape as input

    Raises
    ------
    ConfigurationError
        On an unknown preset or invalid parameters.

    Examples
    --------
    >>> import torch
    >>> from torch_adaptloop import AdaptLoop
    >>>
    >>> adapt = AdaptLoop(fs=16000, preset='dau', dtype=torch.float64)
    >>> x = torch.rand(16000, 31, dtype=torch.float64) * 1e-2
    >>>
    >>> y_full = adapt(x)
    >>> adapt.reset()
    >>> y_chunked = torch.cat([adapt(c) for c in torch.split(x, 512)])
    >>> torch.allclose(y_full, y_chunked)
    True

    References
    ----------
    .. [1] T. Dau, D. Püschel, and A. Kohlrausch, "A quantitative model of the
       'effective' signal processing in the auditory system. I. Model structure,"
       *J. Acoust. Soc. Am.*, vol. 99, no. 6, pp. 3615-3622, 1996.

    .. [2] D. Püschel, "Prinzipien der zeitlichen Analyse beim Hören,"
        Ph.D. dissertation, Universität Göttingen, Germany, 1988.

    .. [3] J. Breebaart, S. van de Par, and A. Kohlrausch, "Binaural processing
        model based on contralateral inhibition. I. Model structure,"
        *J. Acoust. Soc. Am.*, vol. 110, no. 2, pp. 1074-1088, 2001.
    """

    def __init__(self,
                 fs: float,
                 tau: Optional[TauLike] = None,
                 limit: Optional[float] = None,
                 minspl: Optional[float] = None,
                 preset: Optional[Union[str, AdaptLoopPreset]] = None,
                 expand_drnl: bool = False,
                 learnable: bool = False,
                 dtype: torch.dtype = torch.float32):
        super().__init__()

        self.dtype = dtype
        self.learnable = learnable
        self.expand_drnl = expand_drnl

        self.register_buffer('channel_state', None, persistent=False)
        self.configure(preset=preset, fs=fs, limit=limit, minspl=minspl, tau=tau)

    def configure(self,
                  preset: Optional[Union[str, AdaptLoopPreset]] = None,
                  fs: Optional[float] = None,
                  limit: Optional[float] = None,
                  minspl: Optional[float] = None,
                  tau: Optional[TauLike] = None) -> None:
        """
        Replace the configuration and clear all channel states.

        The new configuration is resolved exactly as in the constructor; ``fs``
        defaults to the current sampling rate. Everything is validated before the
        module is modified, so a failing call leaves the previous configuration
        and states in place.

        Raises
        ------
        ConfigurationError
            On an unknown preset or invalid parameters.
        """
        if fs is None:
            if not hasattr(self, 'fs'):
                raise ConfigurationError("'fs' is required")
            fs = self.fs
        fs = validate_fs(fs)
        config = resolve_config(preset=preset, limit=limit, minspl=minspl, tau=tau)

        init_state_ref = self._buffers.get('init_state')
        device = init_state_ref.device if init_state_ref is not None else None
        dtype = init_state_ref.dtype if init_state_ref is not None else self.dtype

        def as_tensor(values):
            return torch.tensor(values, dtype=dtype, device=device)

        a1, b0 = config.coefficients(fs)
        corr, mult = config.output_scaling()

        # Overshoot limiting constants, dummy values when limit <= 1
        if config.overshoot_limiting:
            maxvalue = as_tensor(config.maxvalue)
            factor = maxvalue * 2.0
            expfac = -2.0 / maxvalue
            offset = maxvalue - 1.0
        else:
            factor = torch.zeros(config.num_loops, dtype=dtype, device=device)
            expfac = torch.zeros_like(factor)
            offset = torch.zeros_like(factor)

        self.config = config
        self.fs = fs
        self.num_loops = config.num_loops

        if self.learnable:
            self.a1 = nn.Parameter(as_tensor(a1))
            self.b0 = nn.Parameter(as_tensor(b0))
            self.corr = nn.Parameter(as_tensor(corr))
            self.mult = nn.Parameter(as_tensor(mult))
        else:
            self.register_buffer('a1', as_tensor(a1))
            self.register_buffer('b0', as_tensor(b0))
            self.register_buffer('corr', as_tensor(corr))
            self.register_buffer('mult', as_tensor(mult))

        self.register_buffer('init_state', as_tensor(config.init_state))
        self.register_buffer('factor', factor)
        self.register_buffer('expfac', expfac)
        self.register_buffer('offset', offset)
        self.channel_state = None

        logger.debug("Configured adaptation loops: preset=%s, fs=%g Hz, limit=%g, minspl=%g dB, %d loops",
                     config.preset.value, fs, config.limit, config.minspl, config.num_loops)

    # ------------------------------------------------------------------------------------------------------------

    @property
    def limit(self) -> float:
        return self.config.limit

    @property
    def minspl(self) -> float:
        return self.config.minspl

    @property
    def minlvl(self) -> float:
        return self.config.minlvl

    @property
    def tau(self) -> Tuple[float, ...]:
        return self.config.tau

    @property
    def preset(self) -> AdaptLoopPreset:
        return self.config.preset

    @property
    def is_initialized(self) -> bool:
        """``True`` once a chunk has been processed since the last reset."""
        return self.channel_state is not None

    @property
    def num_channels(self) -> Optional[int]:
        """Channel count established by the first chunk, ``None`` before it."""
        return None if self.channel_state is None else self.channel_state.shape[0]

    @property
    def state(self) -> Optional[torch.Tensor]:
        """Copy of the loop states, shape ``(num_channels, num_loops)``, or ``None``."""
        return None if self.channel_state is None else self.channel_state.clone()

    # ------------------------------------------------------------------------------------------------------------

    def _as_block(self, x: Any) -> torch.Tensor:
        if not isinstance(x, torch.Tensor):
            try:
                x = torch.as_tensor(x)
            except (TypeError, ValueError, RuntimeError) as err:
                raise DimensionError(f"Input must be a numeric (time, channel) block, got {type(x).__name__}") from err

        if x.ndim != 2:
            raise DimensionError(f"Expected input shape (time, channel), got {tuple(x.shape)}")
        if x.shape[1] == 0:
            raise DimensionError("Input has no channels")
        if self.channel_state is not None and x.shape[1] != self.channel_state.shape[0]:
            raise DimensionError(f"Input has {x.shape[1]} channels but the adaptation state holds "
                                 f"{self.channel_state.shape[0]}; call reset() before changing the channel count")

        return x.to(device=self.init_state.device, dtype=self.init_state.dtype)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        r"""
        Adapt one chunk of a (possibly longer) signal.

        Parameters
        ----------
        x : torch.Tensor
            Input chunk, shape :math:`(T, F)`, amplitudes following the
            convention that 1 corresponds to 100 dB SPL. Array-likes are converted
            with :func:`torch.as_tensor`.

        Returns
        -------
        torch.Tensor
            Adapted chunk, same shape as input, in model units (roughly 0-100).

        Raises
        ------
        DimensionError
            If ``x`` is not 2-D, has no channels, or its channel count differs
            from the state established by previous chunks.
        """
        x = self._as_block(x)
        num_samples, num_channels = x.shape

        if num_samples == 0:
            return x.clone()

        if self.expand_drnl:
            x = (x * DRNL_GAIN) ** 2

        if self.channel_state is None:
            state = self.init_state.detach().unsqueeze(0).expand(num_channels, -1).clone()
            logger.debug("Initialized adaptation state for %d channels", num_channels)
        else:
            state = self.channel_state

        output, state = _adapt_loop_core_jit(x,
                                             state,
                                             self.a1,
                                             self.b0,
                                             self.config.minlvl,
                                             self.config.limit,
                                             self.factor,
                                             self.expfac,
                                             self.offset)
        self.channel_state = state.detach()

        # Scale to model units
        return (output - self.corr) * self.mult

    def process_chunk(self, x: torch.Tensor) -> torch.Tensor:
        """Adapt one chunk, shape ``(T, F)``. Equivalent to calling the module."""
        return self(x)

    def process_signal(self, x: torch.Tensor, chunk_size: Optional[int] = None) -> torch.Tensor:
        """
        Adapt a whole signal, shape ``(T, F)``, in consecutive chunks.

        Parameters
        ----------
        x : torch.Tensor
            Input signal, shape :math:`(T, F)`.

        chunk_size : int, optional
            Samples per call to :meth:`process_chunk`. Default: ``None`` (one call).

        Returns
        -------
        torch.Tensor
            Adapted signal, same shape as input.
        """
        if chunk_size is not None and (isinstance(chunk_size, bool) or not isinstance(chunk_size, int)
                                       or chunk_size <= 0):
            raise ConfigurationError(f"'chunk_size' must be a positive integer, got {chunk_size!r}")

        x = self._as_block(x)
        if chunk_size is None or x.shape[0] == 0:
            return self(x)

        return torch.cat([self(chunk) for chunk in torch.split(x, chunk_size, dim=0)], dim=0)

    def reset(self) -> None:
        """Clear the loop states of all channels. The configuration is kept."""
        if self.channel_state is not None:
            logger.debug("Reset adaptation state of %d channels", self.channel_state.shape[0])
        self.channel_state = None

    def parameters_equal(self, other: Union['AdaptLoop', AdaptLoopConfig, Mapping[str, Any]]) -> bool:
        """
        Compare ``limit``, ``minspl`` and ``tau`` with another parameter set.

        Lets a caller decide whether this instance can be reused instead of
        building a new one.

        Parameters
        ----------
        other : AdaptLoop, AdaptLoopConfig or mapping
            Parameter set to compare. Mappings use the keys ``limit``, ``minspl``
            and ``tau`` (or the AMT names ``overshootLimit`` and ``minLeveldB``).

        Returns
        -------
        bool
            ``True`` iff all three parameters match exactly. A ``tau`` of
            different length, or a mapping with a missing key, gives ``False``.
        """
        if isinstance(other, AdaptLoop):
            return self.config == other.config
        if isinstance(other, AdaptLoopConfig):
            return self.config == other
        if not isinstance(other, Mapping):
            raise TypeError(f"Cannot compare parameters with {type(other).__name__}")

        values = {}
        for name in ('limit', 'minspl', 'tau'):
            value = lookup_parameter(other, name)
            if value is None:
                logger.warning("Parameter %s is missing in input parameters", name)
                return False
            values[name] = value

        try:
            return self.config.matches(**values)
        except (TypeError, ValueError, RuntimeError):
            return False

    def extra_repr(self) -> str:
        """
        Extra representation string for module printing.

        Returns
        -------
        str
            String containing key module parameters in MINIMAL format.
        """
        return (f"fs={self.fs}, num_loops={self.num_loops}, "
                f"tau_range=[{min(self.tau):.3f}, {max(self.tau):.3f}] s, "
                f"limit={self.limit:.1f}, minspl={self.minspl:.1f} dB, preset={self.preset.value}, "
                f"expand_drnl={self.expand_drnl}, learnable={self.learnable}")
