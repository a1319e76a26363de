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

"""Assertions over trap records and read-back values.

Every helper raises CheckFailure carrying the expected and actual values, so a
failed case reports exactly what the hart did instead of a bare boolean.
"""

from hartcheck.exceptions import CheckFailure
from hartcheck.verification_types import Privilege, TrapCause, TrapRecord


def expect_trap(
    record: TrapRecord,
    cause: TrapCause,
    aux_value: int | None = None,
    from_privilege: Privilege | None = None,
    return_privilege: Privilege | None = None,
) -> None:
    """Require that the last trap had ``cause`` (and mtval, origin or MPP, if given)."""
    if not record.occurred:
        raise CheckFailure(f"no trap taken, expected {cause.name}")
    if record.cause is not cause:
        raise CheckFailure(
            f"trap cause {record.cause.name}, expected {cause.name}",
            expected=cause.mcause,
            actual=record.cause.mcause,
        )
    if aux_value is not None and record.aux_value != aux_value:
        raise CheckFailure(
            f"{cause.name}: wrong mtval", expected=aux_value, actual=record.aux_value
        )
    if from_privilege is not None and record.from_privilege != from_privilege:
        raise CheckFailure(
            f"{cause.name} taken from {record.from_privilege.name}, "
            f"expected {from_privilege.name}"
        )
    if return_privilege is not None and record.return_privilege != return_privilege:
        raise CheckFailure(
            f"{cause.name} recorded MPP {record.return_privilege.name}, "
            f"expected {return_privilege.name}"
        )


def expect_no_trap(record: TrapRecord) -> None:
    if record.occurred:
        raise CheckFailure(
            f"unexpected trap {record.cause.name} at epc 0x{record.epc:08x}",
            actual=record.cause.mcause,
        )


def expect_equal(what: str, expected: int, actual: int) -> None:
    if expected != actual:
        raise CheckFailure(f"{what} mismatch", expected=expected, actual=actual)


def expect_zero(what: str, actual: int) -> None:
    """Values read without permission must be zero."""
    if actual != 0:
        raise CheckFailure(f"{what} leaked a value", expected=0, actual=actual)
