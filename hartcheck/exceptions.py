#    Copyright 2026 Two Sigma Open Source, LLC
#
#    Licensed under the Apache License, Version 2.0 (the "License");
#    you may not use this file except in compliance with the License.
#    You may obtain a copy of the License at
#
#        http://www.apache.org/licenses/LICENSE-2.0
#
#    Unless required by applicable law or agreed to in writing, software
#    distributed under the License is distributed on an "AS IS" BASIS,
#    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#    See the License for the specific language governing permissions and
#    limitations under the License.

"""Custom exceptions for compliance checking.

Exceptions
==========

This module defines the exception hierarchy used by the checker. The runner
distinguishes three outcomes by exception type:

- CheckFailure, ConfigError, InstallError: the case is recorded as failed and
  the run continues with the next case
- SkipCase: the case is recorded as skipped and not counted in the total
- UnrecoverableError: the hart is in an unknown state and the run aborts
"""


class VerificationError(Exception):
    """Base exception for all compliance-check failures.

    All checker-specific exceptions inherit from this base class,
    allowing callers to catch all of them with a single handler.
    """

    pass


class InstallError(VerificationError):
    """Trap entry or handler installation failed.

    Raised when a handler is installed for a vector that does not exist, or
    when the trap vector written to mtvec does not read back unchanged.
    """

    def __init__(self, message: str, vector_id: object | None = None):
        """Initialize install error with the offending vector.

        Args:
            message: Error description
            vector_id: The vector identifier that was rejected, if any
        """
        super().__init__(message)
        self.vector_id = vector_id


class ConfigError(VerificationError):
    """Invalid or rejected protection/peripheral configuration.

    Raised when a PMP region request is out of range, not a power of two,
    smaller than the hardware granularity, misaligned, or when the hardware
    refused to take the configuration (locked entry).
    """

    pass


class SkipCase(VerificationError):
    """The case cannot run on this hart.

    Raised from inside a case when a precondition only visible at run time
    (e.g. zero PMP granularity) makes the check meaningless.
    """

    pass


class CheckFailure(VerificationError):
    """Observed hart behaviour differs from the architectural expectation.

    Raised by case assertions, such as a wrong trap cause, a wrong mtval,
    a non-zero value read under denied permission or a wrong SC status.
    """

    def __init__(
        self,
        message: str,
        expected: object | None = None,
        actual: object | None = None,
    ):
        """Initialize check failure with comparison context.

        Args:
            message: Error description
            expected: Architecturally required value
            actual: Value observed on the hart
        """
        super().__init__(message)
        self.expected = expected
        self.actual = actual

    def __str__(self) -> str:
        message = super().__str__()
        if self.expected is None and self.actual is None:
            return message
        return f"{message} (expected {_fmt(self.expected)}, got {_fmt(self.actual)})"


class UnrecoverableError(VerificationError):
    """The hart can no longer be trusted to run further cases.

    Raised for a trap taken inside a trap handler, an unmapped stimulus side
    channel, runaway code execution or a WFI that never wakes up.
    """

    def __init__(self, message: str, ledger: object | None = None):
        """Initialize unrecoverable error.

        Args:
            message: Error description
            ledger: Results recorded before the run was aborted, if any
        """
        super().__init__(message)
        self.ledger = ledger


def _fmt(value: object) -> str:
    if isinstance(value, bool) or not isinstance(value, int):
        return str(value)
    return f"0x{value:08x}"
