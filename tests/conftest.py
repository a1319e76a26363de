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

"""Pytest configuration for tests."""

import os
from collections.abc import Callable
from typing import Any

import pytest

from hartcheck.catalog import bring_up
from hartcheck.models.hart_model import HartModel, HartModelConfig, ModelQuirks
from hartcheck.runner import CheckEnvironment
from hartcheck.verification_types import Capabilities


def pytest_configure(config: Any) -> None:
    """Register custom pytest markers."""
    config.addinivalue_line("markers", "cocotb: mark test as a cocotb simulation test")
    config.addinivalue_line("markers", "slow: mark test as slow running")


def pytest_addoption(parser: Any) -> None:
    """Add custom command line options for tests."""
    parser.addoption(
        "--sim",
        action="store",
        default=None,
        help="Simulator to use (verilator or icarus). "
        "When set, only parametrized tests for this simulator are run.",
    )


@pytest.fixture(scope="session", autouse=True)
def setup_cocotb_env(request: Any) -> None:
    """Set up environment variables for cocotb from command line options."""
    sim = request.config.getoption("--sim")
    if sim:
        os.environ["SIM"] = sim


def pytest_collection_modifyitems(config: Any, items: Any) -> None:
    """Deselect parametrized simulator tests that do not match --sim."""
    sim = config.getoption("--sim")
    if not sim:
        return
    selected = []
    deselected = []
    for item in items:
        callspec = getattr(item, "callspec", None)
        if callspec and "simulator" in callspec.params:
            if callspec.params["simulator"] != sim:
                deselected.append(item)
                continue
        selected.append(item)
    if deselected:
        config.hook.pytest_deselected(items=deselected)
        items[:] = selected


# =============================================================================
# Reference model fixtures
# =============================================================================


def build_model(capabilities: Capabilities | None = None, **quirks: bool) -> HartModel:
    return HartModel(
        HartModelConfig(
            capabilities=capabilities or Capabilities(),
            quirks=ModelQuirks(**quirks),
        )
    )


@pytest.fixture
def model() -> HartModel:
    """A compliant reference hart with every feature."""
    return build_model()


@pytest.fixture
def make_model() -> Callable[..., HartModel]:
    """Factory: ``make_model(capabilities=None, **quirks)`` -> HartModel."""
    return build_model


@pytest.fixture
def env(model: HartModel) -> CheckEnvironment:
    """Environment on the compliant model, trap entry installed."""
    environment = CheckEnvironment.create(model)
    bring_up(environment)
    return environment


@pytest.fixture
def make_env() -> Callable[..., CheckEnvironment]:
    """Factory: ``make_env(capabilities=None, **quirks)`` -> brought-up environment."""

    def factory(capabilities: Capabilities | None = None, **quirks: bool) -> CheckEnvironment:
        environment = CheckEnvironment.create(build_model(capabilities, **quirks))
        bring_up(environment)
        return environment

    return factory
