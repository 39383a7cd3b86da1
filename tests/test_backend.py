"""Tests for engine/backend.py.

Tests for the simulated backend and the backend registry.
"""

import pytest

from forkdeploy.core.errors import BackendError, FatalBackendError, TransientBackendError
from forkdeploy.engine.backend import (
    BackendRegistry,
    SimulatedBackend,
    backend_registry,
    create_backend,
)


class TestSimulatedBackend:
    """Tests for SimulatedBackend."""

    def test_create_returns_address(self):
        backend = SimulatedBackend()

        address = backend.create("Vault", [])

        assert address.startswith("0x")
        assert len(address) == 42
        assert backend.deployed[address] == "Vault"

    def test_addresses_deterministic(self):
        """Test two fresh backends derive the same addresses."""
        first = [SimulatedBackend().create("Vault", []) for _ in range(2)]

        assert first[0] == first[1]

    def test_addresses_unique(self):
        backend = SimulatedBackend()

        assert backend.create("Vault", []) != backend.create("Vault", [])

    def test_invoke_records_call(self):
        backend = SimulatedBackend()
        address = backend.create("Vault", [])

        receipt = backend.invoke(address, "setMaxLeverage", [10])

        assert receipt["status"] == 1
        assert backend.calls[-1].handle == address
        assert backend.count("invoke") == 1
        assert backend.count() == 2

    def test_strict_rejects_unknown_handle(self):
        backend = SimulatedBackend()

        with pytest.raises(FatalBackendError, match="No resource"):
            backend.invoke("0x" + "9" * 40, "setGov", [])

    def test_lenient_accepts_unknown_handle(self):
        backend = SimulatedBackend(strict=False)

        assert backend.invoke("0x" + "9" * 40, "setGov", [])["status"] == 1

    def test_scripted_failure_limited(self):
        """Test a failure scripted for N calls stops after N."""
        backend = SimulatedBackend()
        backend.fail_on("Vault", TransientBackendError("busy"), operation="create", times=1)

        with pytest.raises(TransientBackendError):
            backend.create("Vault", [])

        assert backend.create("Vault", []).startswith("0x")

    def test_clear_failures(self):
        backend = SimulatedBackend()
        backend.fail_on("Vault", TransientBackendError("busy"), operation="create")
        backend.clear_failures()

        assert backend.create("Vault", [])


class TestBackendRegistry:
    """Tests for BackendRegistry."""

    def test_simulated_registered(self):
        names = [spec.name for spec in backend_registry.list()]

        assert "simulated" in names

    def test_registry_simulated_is_lenient(self):
        """Test the registry backend accepts handles from earlier runs."""
        backend = create_backend("simulated")

        assert isinstance(backend, SimulatedBackend)
        assert backend.strict is False

    def test_register_and_create(self):
        registry = BackendRegistry()
        registry.register("custom", SimulatedBackend, description="test")

        assert isinstance(registry.create("custom"), SimulatedBackend)

    def test_register_requires_name(self):
        with pytest.raises(ValueError):
            BackendRegistry().register("", SimulatedBackend)

    def test_unknown_backend(self):
        with pytest.raises(BackendError, match="not registered"):
            BackendRegistry().create("chain")

    def test_import_path(self):
        """Test module:attribute names are imported."""
        backend = BackendRegistry().create("forkdeploy.engine.backend:SimulatedBackend")

        assert isinstance(backend, SimulatedBackend)

    def test_bad_import_path(self):
        with pytest.raises(BackendError, match="Cannot load"):
            BackendRegistry().create("forkdeploy.nowhere:Backend")
