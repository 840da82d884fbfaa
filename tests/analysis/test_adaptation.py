"""
AdaptLoop - Comprehensive Test Suite

Contents:
1. test_reference_recursion: Agreement with a plain per-sample reference loop
2. test_chunk_invariance: Single call vs. arbitrary chunkings (incl. 1-sample chunks)
3. test_steady_state_convergence: Constant minimum-level input gives 0 model units
4. test_single_loop_minimum_level: Single loop, no limiting, minimum-level input
5. test_overshoot_bound / test_overshoot_bound_per_loop: Loop values stay below the logistic ceiling
   test_weak_overshoot_limit: Negative ceilings (limit 1.5) against the reference
   test_nan_input_is_floored: NaN / -inf samples act like the minimum level
6. test_reset / test_configure: State lifecycle and reconfiguration
7. test_dimension_errors: Malformed input blocks leave the state untouched
8. test_parameters_equal: Reuse decisions against modules, configs and dicts
9. test_drnl_expansion: +50 dB gain and squaring ahead of the loops
10. test_step_response_visualization: Onset response of the presets

Figures generated:
- adaptation_step_response.png: step responses of dau / puschel / breebaart / osses2021
"""

import math

import torch
import numpy as np
import matplotlib.pyplot as plt
import pytest
from pathlib import Path

from torch_adaptloop import AdaptLoop, AdaptLoopConfig, ConfigurationError, DimensionError
from torch_adaptloop.common.adaptation import DRNL_GAIN
from torch_adaptloop.common.parameters import DAU_TAU

SEED = 564687


def make_envelope(n_samples=400, n_channels=6, seed=SEED):
    """IHC-like envelope: silence, a loud burst, then a moderate tail."""
    gen = torch.Generator().manual_seed(seed)
    x = torch.rand(n_samples, n_channels, generator=gen, dtype=torch.float64) * 1e-3
    x[n_samples // 4: n_samples // 2] *= 500.0
    return x


def reference_adaptloop(x, fs, limit, minspl, tau):
    """Plain-Python sample-by-sample adaptation loops.

    Returns the scaled output and, per loop, the largest value after limiting.
    """
    minlvl = 10.0 ** ((minspl - 100.0) / 20.0)
    num_loops = len(tau)
    a1 = [math.exp(-1.0 / (t * fs)) for t in tau]
    b0 = [1.0 - a for a in a1]
    init_state = [minlvl ** (1.0 / 2 ** (k + 1)) for k in range(num_loops)]
    maxvalue = [(1.0 - s * s) * limit - 1.0 for s in init_state]
    corr = minlvl ** (1.0 / 2 ** num_loops)
    mult = 100.0 / (1.0 - corr)

    data = x.tolist()
    out = np.zeros((len(data), len(data[0]) if data else 0))
    peaks = [-math.inf] * num_loops
    for ch in range(out.shape[1]):
        state = list(init_state)
        for i in range(out.shape[0]):
            tmp = max(data[i][ch], minlvl)
            for k in range(num_loops):
                tmp = tmp / state[k]
                if limit > 1 and tmp > 1:
                    m = maxvalue[k]
                    tmp = 2 * m / (1 + math.exp(-2 / m * (tmp - 1))) - (m - 1)
                peaks[k] = max(peaks[k], tmp)
                state[k] = a1[k] * state[k] + b0[k] * tmp
            out[i, ch] = tmp
    return (out - corr) * mult, peaks, maxvalue


@pytest.mark.parametrize("preset", ['dau', 'puschel', 'breebaart', 'osses2021'])
def test_reference_recursion(preset):
    """Vectorized engine matches the per-sample reference for every preset."""
    fs = 8000
    adapt = AdaptLoop(fs=fs, preset=preset, dtype=torch.float64)
    x = make_envelope(n_samples=300, n_channels=3)

    with torch.no_grad():
        y = adapt(x).numpy()
    y_ref, _, _ = reference_adaptloop(x, fs, adapt.limit, adapt.minspl, adapt.tau)

    print(f"\n{preset}: max |engine - reference| = {np.abs(y - y_ref).max():.3e}")
    np.testing.assert_allclose(y, y_ref, rtol=1e-9, atol=1e-9)


@pytest.mark.parametrize("chunk_sizes", [[1] * 50 + [350], [7, 93, 1, 299], [200, 200], [399, 1]])
def test_chunk_invariance(chunk_sizes):
    """Any split into consecutive chunks reproduces the single-call output."""
    adapt = AdaptLoop(fs=16000, preset='dau', dtype=torch.float64)
    x = make_envelope(n_samples=sum(chunk_sizes))

    with torch.no_grad():
        y_full = adapt(x)
        adapt.reset()
        y_chunked = torch.cat([adapt(c) for c in torch.split(x, chunk_sizes, dim=0)], dim=0)

    assert y_chunked.shape == x.shape
    torch.testing.assert_close(y_chunked, y_full, rtol=1e-10, atol=1e-10)


def test_process_signal_matches_chunks():
    adapt = AdaptLoop(fs=16000, preset='breebaart', dtype=torch.float64)
    x = make_envelope()

    with torch.no_grad():
        y_full = adapt.process_signal(x)
        adapt.reset()
        y_chunked = adapt.process_signal(x, chunk_size=64)

    torch.testing.assert_close(y_chunked, y_full, rtol=1e-10, atol=1e-10)

    with pytest.raises(ConfigurationError):
        adapt.process_signal(x, chunk_size=0)


def test_steady_state_convergence():
    """A constant input at the minimum level stays at 0 model units."""
    adapt = AdaptLoop(fs=16000, preset='dau', dtype=torch.float64)
    x = torch.full((2000, 4), adapt.minlvl, dtype=torch.float64)

    y = adapt(x)

    print(f"\nSteady state: max |y| = {y.abs().max():.3e}")
    assert torch.allclose(y, torch.zeros_like(y), atol=1e-8)
    torch.testing.assert_close(adapt.state, adapt.init_state.expand(4, -1), rtol=1e-12, atol=1e-15)


def test_convergence_after_transient():
    """After a burst the output settles back to 0 within a few slowest time constants."""
    fs = 1000
    adapt = AdaptLoop(fs=fs, preset='dau', dtype=torch.float64)
    x = torch.full((6000, 1), adapt.minlvl, dtype=torch.float64)
    x[:200] = 0.1

    y = adapt(x)

    assert y[:200].max() > 10.0
    assert y[-1].abs().item() < 0.5


def test_single_loop_minimum_level():
    """Single loop without limiting: input equal to the minimum level maps to 0."""
    adapt = AdaptLoop(fs=1000, dtype=torch.float64)
    adapt.configure(fs=1000, limit=0, minspl=0, tau=[0.005])

    assert adapt.minlvl == pytest.approx(1e-5)
    y = adapt(torch.tensor([[1e-5], [1e-5], [1e-5]], dtype=torch.float64))

    assert y.shape == (3, 1)
    assert torch.allclose(y, torch.zeros_like(y), atol=1e-9)


def test_minimum_level_floor():
    """Inputs below the minimum level (including negative values) are floored."""
    adapt = AdaptLoop(fs=1000, preset='dau', dtype=torch.float64)
    x = torch.tensor([[-1.0, 0.0, 1e-9, 1e-5]], dtype=torch.float64).repeat(10, 1)

    y = adapt(x)

    assert torch.allclose(y, torch.zeros_like(y), atol=1e-8)


def test_overshoot_bound():
    """With limiting, a huge transient never pushes a loop beyond its logistic ceiling."""
    fs = 16000
    adapt = AdaptLoop(fs=fs, limit=10, minspl=0, dtype=torch.float64)
    x = torch.full((400, 1), adapt.minlvl, dtype=torch.float64)
    x[100:110] = 1e3

    y = adapt(x)
    _, peaks, maxvalue = reference_adaptloop(x, fs, adapt.limit, adapt.minspl, adapt.tau)

    # The logistic saturates at maxvalue + 1 (value 1 at the knee, slope 1)
    for k, (peak, m) in enumerate(zip(peaks, maxvalue)):
        print(f"  loop {k + 1}: peak={peak:.4f}, ceiling={m + 1:.4f}")
        assert peak <= m + 1

    corr = adapt.corr.item()
    mult = adapt.mult.item()
    assert y.max().item() <= (maxvalue[-1] + 1 - corr) * mult

    # Without limiting the same transient overshoots far more
    adapt_unlimited = AdaptLoop(fs=fs, limit=0, minspl=0, dtype=torch.float64)
    assert adapt_unlimited(x).max() > y.max() * 10


def test_overshoot_bound_per_loop():
    """Every loop of the engine stays below its own ceiling.

    An engine built from the first k+1 time constants reproduces the first k+1
    loops of the full cascade, so its unscaled output is the value of loop k.
    """
    fs = 16000
    x = torch.full((400, 1), 1e-5, dtype=torch.float64)
    x[100:110] = 1e3
    _, peaks, maxvalue = reference_adaptloop(x, fs, 10.0, 0.0, DAU_TAU)

    for k in range(len(DAU_TAU)):
        adapt = AdaptLoop(fs=fs, limit=10, minspl=0, tau=DAU_TAU[:k + 1], dtype=torch.float64)
        with torch.no_grad():
            loop_out = adapt(x) / adapt.mult + adapt.corr

        m = adapt.config.maxvalue[k]
        assert m == pytest.approx(maxvalue[k], rel=1e-12)
        assert loop_out.max().item() <= m + 1 + 1e-9
        assert loop_out.max().item() == pytest.approx(peaks[k], rel=1e-9)


def test_weak_overshoot_limit():
    """Limits close to 1 give negative ceilings in the slow loops and still run."""
    fs = 16000
    adapt = AdaptLoop(fs=fs, limit=1.5, minspl=0, dtype=torch.float64)
    assert min(adapt.config.maxvalue) < 0
    x = make_envelope(n_channels=3)

    with torch.no_grad():
        y = adapt(x).numpy()
    y_ref, _, _ = reference_adaptloop(x, fs, 1.5, 0.0, DAU_TAU)

    assert np.isfinite(y).all()
    np.testing.assert_allclose(y, y_ref, rtol=1e-9, atol=1e-9)


def test_nan_input_is_floored():
    """NaN and -inf samples act like the minimum level instead of corrupting the state."""
    adapt = AdaptLoop(fs=16000, preset='dau', dtype=torch.float64)
    x = torch.full((50, 2), adapt.minlvl, dtype=torch.float64)
    x[0, 0] = float('nan')
    x[3, 1] = float('-inf')

    y = adapt(x)

    assert torch.isfinite(y).all()
    assert torch.isfinite(adapt.state).all()
    assert torch.allclose(y, torch.zeros_like(y), atol=1e-8)

    # Later chunks keep producing finite output
    y_next = adapt(torch.full((20, 2), 1e-2, dtype=torch.float64))
    assert torch.isfinite(y_next).all()


def test_reset():
    adapt = AdaptLoop(fs=16000, dtype=torch.float64)
    assert not adapt.is_initialized
    assert adapt.num_channels is None and adapt.state is None

    x = make_envelope(n_channels=3)
    y_first = adapt(x)
    assert adapt.is_initialized
    assert adapt.num_channels == 3
    assert adapt.state.shape == (3, adapt.num_loops)

    adapt.reset()
    adapt.reset()
    assert not adapt.is_initialized
    assert adapt.limit == 10.0

    # After reset the same input reproduces the first output
    torch.testing.assert_close(adapt(x), y_first, rtol=0, atol=0)

    # State is carried otherwise
    assert not torch.allclose(adapt(x), y_first)


def test_state_is_copy():
    adapt = AdaptLoop(fs=16000, dtype=torch.float64)
    adapt(make_envelope(n_channels=2))
    state = adapt.state
    state.zero_()
    assert (adapt.channel_state > 0).all()


def test_configure():
    adapt = AdaptLoop(fs=16000, preset='dau', dtype=torch.float64)
    adapt(make_envelope(n_channels=2))

    adapt.configure('adt_puschel', fs=8000)
    assert adapt.fs == 8000
    assert adapt.limit == 0 and adapt.minspl == 0
    np.testing.assert_allclose(adapt.tau, np.linspace(0.005, 0.5, 5))
    assert not adapt.is_initialized
    assert adapt.a1.dtype == torch.float64

    a1_expected = torch.exp(-1.0 / (torch.tensor(adapt.tau, dtype=torch.float64) * 8000))
    torch.testing.assert_close(adapt.a1, a1_expected)
    torch.testing.assert_close(adapt.a1 + adapt.b0, torch.ones(5, dtype=torch.float64))

    # Different channel count is fine after reconfiguration
    y = adapt(make_envelope(n_channels=5))
    assert y.shape == (400, 5)


@pytest.mark.parametrize("kwargs", [
    dict(preset='unknown'),
    dict(tau=[0.005, -0.05]),
    dict(tau=[]),
    dict(tau=[[0.005, 0.05]]),
    dict(tau=[0.005, float('nan')]),
    dict(limit=float('inf')),
    dict(limit=[1.0, 2.0]),
    dict(minspl='loud'),
    dict(minspl=100.0),
    dict(fs=0),
    dict(fs=-16000),
])
def test_configure_errors_leave_module_untouched(kwargs):
    adapt = AdaptLoop(fs=16000, preset='breebaart', dtype=torch.float64)
    adapt(make_envelope(n_channels=2))
    config, state = adapt.config, adapt.state

    with pytest.raises(ConfigurationError):
        adapt.configure(**kwargs)

    assert adapt.config == config
    assert adapt.fs == 16000
    torch.testing.assert_close(adapt.state, state)


def test_constructor_errors():
    with pytest.raises(ConfigurationError):
        AdaptLoop(fs=16000, preset='adt_unknown')
    with pytest.raises(ValueError):
        AdaptLoop(fs=0)


def test_dimension_errors():
    adapt = AdaptLoop(fs=16000, dtype=torch.float64)
    x = make_envelope(n_channels=4)

    with pytest.raises(DimensionError):
        adapt(x[:, 0])
    with pytest.raises(DimensionError):
        adapt(x.unsqueeze(0))
    with pytest.raises(DimensionError):
        adapt(torch.zeros(10, 0, dtype=torch.float64))
    assert not adapt.is_initialized

    adapt(x)
    state = adapt.state
    with pytest.raises(DimensionError):
        adapt(make_envelope(n_channels=3))
    torch.testing.assert_close(adapt.state, state, rtol=0, atol=0)


def test_empty_chunk():
    adapt = AdaptLoop(fs=16000, dtype=torch.float64)
    y = adapt(torch.zeros(0, 3, dtype=torch.float64))
    assert y.shape == (0, 3)
    assert not adapt.is_initialized


def test_array_like_input():
    adapt = AdaptLoop(fs=16000)
    y = adapt.process_chunk(np.full((5, 2), 1e-5))
    assert isinstance(y, torch.Tensor)
    assert y.dtype == torch.float32
    assert y.shape == (5, 2)


def test_parameters_equal():
    adapt = AdaptLoop(fs=16000, preset='dau')

    assert adapt.parameters_equal(AdaptLoop(fs=44100))
    assert adapt.parameters_equal(AdaptLoopConfig(10, 0, (0.005, 0.050, 0.129, 0.253, 0.500)))
    assert adapt.parameters_equal({'overshootLimit': 10, 'minLeveldB': 0,
                                   'tau': [0.005, 0.050, 0.129, 0.253, 0.500]})

    assert not adapt.parameters_equal(AdaptLoop(fs=16000, preset='osses2021'))
    assert not adapt.parameters_equal(AdaptLoop(fs=16000, minspl=-10))
    assert not adapt.parameters_equal(AdaptLoop(fs=16000, tau=[0.005, 0.050, 0.129, 0.253]))
    assert not adapt.parameters_equal(AdaptLoop(fs=16000, tau=[0.005, 0.050, 0.129, 0.253, 0.501]))
    assert not adapt.parameters_equal({'limit': 10, 'tau': [0.005]})
    assert not adapt.parameters_equal({'limit': 10, 'minspl': 0, 'tau': [0.005, 0.05]})

    with pytest.raises(TypeError):
        adapt.parameters_equal(10)


def test_parameters_equal_missing_key_warns(caplog):
    adapt = AdaptLoop(fs=16000)
    with caplog.at_level('WARNING', logger='torch_adaptloop.common.adaptation'):
        assert not adapt.parameters_equal({'limit': 10, 'tau': [0.005]})
    assert "minspl" in caplog.text


def test_drnl_expansion():
    """expand_drnl equals feeding the amplified, squared envelope to a plain engine."""
    x = make_envelope(n_channels=2) * 1e-3
    adapt_drnl = AdaptLoop(fs=16000, expand_drnl=True, dtype=torch.float64)
    adapt_plain = AdaptLoop(fs=16000, dtype=torch.float64)

    torch.testing.assert_close(adapt_drnl(x), adapt_plain((x * DRNL_GAIN) ** 2))
    assert DRNL_GAIN == pytest.approx(10 ** 2.5)


def test_step_response_visualization():
    """Generate the onset/offset response of every preset to a 60 dB tone burst."""
    fs = 16000
    t = np.arange(int(0.6 * fs)) / fs
    burst = (t >= 0.1) & (t < 0.4)
    x = torch.full((len(t), 1), 1e-5, dtype=torch.float64)
    x[torch.from_numpy(burst)] = 10 ** ((60 - 100) / 20)

    fig, axes = plt.subplots(4, 1, figsize=(10, 10), sharex=True)
    for ax, preset in zip(axes, ['dau', 'puschel', 'breebaart', 'osses2021']):
        adapt = AdaptLoop(fs=fs, preset=preset, dtype=torch.float64)
        with torch.no_grad():
            y = adapt.process_signal(x, chunk_size=160).squeeze(1).numpy()

        assert np.isfinite(y).all()
        ax.plot(t * 1000, y, linewidth=1)
        ax.set_title(f"{preset}: limit={adapt.limit:g}", fontsize=11)
        ax.set_ylabel('Model units')
        ax.grid(True, alpha=0.3)
    axes[-1].set_xlabel('Time (ms)')

    plt.tight_layout()

    TEST_FIGURES_DIR = Path(__file__).parent.parent.parent / 'test_figures'
    TEST_FIGURES_DIR.mkdir(exist_ok=True)
    output_path = TEST_FIGURES_DIR / 'adaptation_step_response.png'
    plt.savefig(output_path, dpi=150, bbox_inches='tight')
    print(f"\n✓ Saved: {output_path}")

    plt.close()


if __name__ == '__main__':
    print("\n" + "="*80)
    print("ADAPTATION - COMPREHENSIVE TEST SUITE")
    print("="*80)

    for preset in ['dau', 'puschel', 'breebaart', 'osses2021']:
        test_reference_recursion(preset)
    test_chunk_invariance([7, 93, 1, 299])
    test_steady_state_convergence()
    test_single_loop_minimum_level()
    test_overshoot_bound()
    test_step_response_visualization()

    print("\n" + "="*80)
    print("ALL TESTS COMPLETE")
    print("="*80)
