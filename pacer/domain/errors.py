"""
Exception hierarchy for pacer.

PacerError
└── ConfigurationError   — invalid scheduler options (fails fast)

Rejections, expirations and handler failures are NOT exceptions at this
layer: they are reported through callbacks and counters on the scheduler.
Handler errors are re-raised unchanged from AsyncQueuer.flush() and
AsyncQueuer.execute() when throw_on_error is enabled.
"""

from __future__ import annotations


class PacerError(Exception):
    """Base class for all pacer exceptions."""


class ConfigurationError(PacerError, ValueError):
    """
    Raised when scheduler options are invalid.

    Raised at construction, on set_options(), or when a callable option
    (concurrency / wait) evaluates to an invalid value.

    Attributes
    ----------
    option : str | None
        The offending option name, when a single option is to blame.
    """

    def __init__(self, message: str, option: str | None = None) -> None:
        self.option = option
        super().__init__(message)
