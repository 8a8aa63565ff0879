"""
Shared test fixtures and configuration for hvsession tests.

This module provides common fixtures used across all test types:
- A fake hypervisor command adapter with canned output
- Named lock tables
- Temporary session descriptor stores
- Registries and orchestrators wired to the fake adapter
- Interaction handler and progress mocks
"""

from unittest.mock import MagicMock

import pytest

from hvsession.config_manager import HypervisorSettings
from hvsession.hypervisor import Hypervisor
from hvsession.modules.interaction_handler import MockInteractionHandler
from hvsession.modules.progress import FiniteTask
from hvsession.modules.subprocess_helper import ExecConfig
from hvsession.named_locks import NamedLockTable
from hvsession.session import SessionContext
from hvsession.session_registry import SessionRegistry
from hvsession.session_store import SessionStore
from hvsession.vm_queries import VMQueries
from tests.fixtures.vbox_outputs import (
    LIST_EXTPACKS_INSTALLED,
    LIST_VMS_OUTPUT,
    SYSTEM_PROPERTIES_OUTPUT,
    VERSION_OUTPUT,
)
from tests.mocks.fake_hypervisor import FakeCommandAdapter, RecordingLockTable

# ============================================================================
# COMMAND ADAPTER FIXTURES
# ============================================================================


@pytest.fixture
def fake_adapter():
    """Fake command adapter answering every command with exit code 0 and no output."""
    return FakeCommandAdapter(default_config=ExecConfig(timeout=30))


@pytest.fixture
def healthy_adapter(fake_adapter):
    """Fake adapter for a healthy hypervisor with the extension pack installed."""
    fake_adapter.configure_response("--version", stdout=VERSION_OUTPUT)
    fake_adapter.configure_response("list systemproperties", stdout=SYSTEM_PROPERTIES_OUTPUT)
    fake_adapter.configure_response("list vms", stdout=LIST_VMS_OUTPUT)
    fake_adapter.configure_response("list extpacks", stdout=LIST_EXTPACKS_INSTALLED)
    return fake_adapter


# ============================================================================
# LOCK FIXTURES
# ============================================================================


@pytest.fixture
def locks():
    """In-process named lock table."""
    return NamedLockTable()


@pytest.fixture
def recording_locks(locks, fake_adapter):
    """Lock table that records which locks each command ran under."""
    return RecordingLockTable(locks, fake_adapter)


# ============================================================================
# SESSION FIXTURES
# ============================================================================


@pytest.fixture
def runtime_dir(tmp_path):
    """Temporary directory for session descriptors."""
    directory = tmp_path / "runtime"
    directory.mkdir(mode=0o700)
    return directory


@pytest.fixture
def session_store(runtime_dir):
    return SessionStore(runtime_dir)


@pytest.fixture
def session_context(fake_adapter, recording_locks, session_store):
    """Session collaborators wired to the fake adapter."""
    return SessionContext(
        adapter=fake_adapter,
        locks=recording_locks,
        store=session_store,
        queries=VMQueries(fake_adapter, recording_locks),
        exec_config=fake_adapter.default_config,
        machine_info_timeout=10,
    )


@pytest.fixture
def registry(session_context):
    return SessionRegistry(session_context)


# ============================================================================
# ORCHESTRATOR FIXTURES
# ============================================================================


@pytest.fixture
def settings(tmp_path):
    """Settings pointing all state at a temporary directory."""
    return HypervisorSettings(
        runtime_dir=str(tmp_path / "runtime"),
        elevation_command="sudo",
        driver_repair_command="/sbin/vboxconfig",
    )


@pytest.fixture
def available_detector():
    """Detector that always finds the hypervisor binary."""
    detector = MagicMock()
    detector.is_available.return_value = True
    return detector


@pytest.fixture
def hypervisor(settings, healthy_adapter, available_detector):
    """Validated orchestrator on top of the healthy fake adapter."""
    hv = Hypervisor(settings, healthy_adapter, detector=available_detector)
    assert hv.validate()
    return hv


# ============================================================================
# INTERACTION / PROGRESS FIXTURES
# ============================================================================


@pytest.fixture
def progress():
    """Progress task recording every update."""
    return FiniteTask("test")


@pytest.fixture
def accepting_interaction():
    """Interaction handler that accepts every prompt."""
    return MockInteractionHandler(confirm_responses=[True] * 5, license_responses=[True] * 5)
