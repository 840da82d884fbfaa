"""
Adaptation Loop Errors
======================

Author:
    Stefano Giacomelli - Ph.D. candidate @ DISIM dpt. - University of L'Aquila

License:
    GNU General Public License v3.0 or later (GPLv3+)

Exception hierarchy raised by the adaptation loop engine. Both concrete errors
subclass :class:`ValueError`, so callers catching ``ValueError`` around module
construction or a forward pass keep working.
"""


class AdaptLoopError(ValueError):
    """Base class for all errors raised by :mod:`torch_adaptloop`."""


class ConfigurationError(AdaptLoopError):
    """
    Invalid or unsupported adaptation loop configuration.

    Raised at construction / :meth:`AdaptLoop.configure` time for an unknown
    preset name, empty or non-positive time constants, non-finite scalars,
    a non-positive sampling rate, ``minspl == 100`` or a limit that makes a
    loop ceiling exactly zero. The engine is left untouched.
    """


class DimensionError(AdaptLoopError):
    """
    Malformed input block passed to :meth:`AdaptLoop.process_chunk`.

    Raised for non 2-D input, zero channels, or a channel count that differs
    from the one established by previously processed chunks. Raised before any
    channel state is modified.
    """
