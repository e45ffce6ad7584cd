"""Tests for the plugin installer and plugin manager lifecycle."""

import asyncio

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from blacktop.errors import (
    InstallError,
    NotLoadedError,
    PluginNotFoundError,
    SignatureError,
    ValidationError,
)
from blacktop.plugins.api import PluginApi
from blacktop.plugins.config import PluginConfigService, PluginManagerConfig
from blacktop.plugins.lifecycle import PluginState
from blacktop.plugins.manager import PluginManager
from blacktop.plugins.trust import sign_package
from blacktop.services.messaging_service import MessagingService
from blacktop.services.storage_service import InMemoryKeyValueStore
from plugin_helpers import PLUGIN_SOURCE, write_plugin

MISSING_ENABLE_SOURCE = '''
class SamplePlugin:
    id = "broken"
    name = "Broken"
    version = "1.0.0"
    description = "No enable method"
    author = "tests"

    def initialize(self, context):
        pass

    def disable(self):
        pass

    def destroy(self):
        pass
'''

MISSING_DESTROY_SOURCE = MISSING_ENABLE_SOURCE.replace(
    "    def destroy(self):\n        pass\n", "    def enable(self):\n        pass\n"
)

FAILING_DESTROY_SOURCE = '''
class SamplePlugin:
    id = "fragile"
    name = "Fragile"
    version = "1.0.0"
    description = "Raises on destroy"
    author = "tests"

    def initialize(self, context):
        pass

    def enable(self):
        pass

    def disable(self):
        pass

    def destroy(self):
        raise RuntimeError("destroy failed")
'''

SLOW_INIT_SOURCE = '''
import asyncio


class SamplePlugin:
    id = "slow"
    name = "Slow"
    version = "1.0.0"
    description = "Slow initialize"
    author = "tests"

    async def initialize(self, context):
        await asyncio.sleep(0.05)

    def enable(self):
        pass

    def disable(self):
        pass

    def destroy(self):
        pass
'''

FACTORY_SOURCE = '''
class _Plugin:
    id = "factory"
    name = "Factory"
    version = "1.0.0"
    description = "Built by a factory"
    author = "tests"

    def initialize(self, context):
        self.config = context.config

    def enable(self):
        pass

    def disable(self):
        pass

    def destroy(self):
        pass


def create_plugin():
    return _Plugin()
'''


SLOW_DESTROY_SOURCE = PLUGIN_SOURCE.replace(
    '        self.calls.append("destroy")\n',
    '        await asyncio.sleep(0.05)\n        self.calls.append("destroy")\n',
).replace("class SamplePlugin:", "import asyncio\n\n\nclass SamplePlugin:")


def _make_manager(plugin_dirs, tmp_path, **config_kwargs):
    installed, bundled = plugin_dirs
    config = PluginManagerConfig(plugin_directory=installed, bundled_directory=bundled, **config_kwargs)
    api = PluginApi(messaging=MessagingService(), storage=InMemoryKeyValueStore())
    return PluginManager(config, api, config_service=PluginConfigService(tmp_path / "config.json"))


@pytest.fixture
def manager(plugin_dirs, tmp_path):
    return _make_manager(plugin_dirs, tmp_path)


@pytest.fixture
def events(manager):
    """Records every lifecycle event emitted by the manager."""
    recorded = []
    for name in (
        "beforeInstall", "installed", "pluginLoaded", "pluginUnloaded",
        "pluginEnabled", "pluginDisabled", "pluginUninstalled", "error",
    ):
        manager.on(name, lambda *args, _name=name: recorded.append((_name, args)))
    return recorded


def _event_names(events):
    return [name for name, _ in events]


class TestInstall:
    """Tests for install_plugin."""

    def test_install_from_local_directory(self, manager, events, plugin_source_dir, plugin_dirs):
        source = write_plugin(plugin_source_dir, "fleet")

        metadata = asyncio.run(manager.install_plugin(str(source)))

        installed, _ = plugin_dirs
        assert (installed / "fleet" / "plugin.json").exists()
        assert metadata.id == "fleet"
        assert metadata.installed is True
        assert metadata.install_date is not None
        assert metadata.trusted is None
        assert manager.registry.get_plugin_metadata("fleet").installed is True
        assert manager.get_installed_plugins() == ["fleet"]
        assert manager.get_plugin_state("fleet") == PluginState.INSTALLED
        assert _event_names(events) == ["beforeInstall", "installed"]

    def test_install_without_manifest_fails_cleanly(self, manager, events, plugin_source_dir, plugin_dirs):
        """A failed install raises InstallError, emits error and leaves nothing behind."""
        empty = plugin_source_dir / "empty"
        empty.mkdir()

        with pytest.raises(InstallError):
            asyncio.run(manager.install_plugin(str(empty)))

        installed, _ = plugin_dirs
        assert list(installed.iterdir()) == []
        assert "error" in _event_names(events)

    def test_reinstall_keeps_enabled_flag(self, manager, plugin_source_dir):
        source = write_plugin(plugin_source_dir, "fleet")
        asyncio.run(manager.install_plugin(str(source)))
        manager.registry.update_plugin_metadata("fleet", {"enabled": True})

        write_plugin(plugin_source_dir, "fleet", version="1.1.0")
        metadata = asyncio.run(manager.install_plugin(str(source)))

        assert metadata.version == "1.1.0"
        assert metadata.enabled is True

    def test_install_waits_for_uninstall_of_same_id(self, manager, plugin_source_dir, plugin_dirs):
        """A reinstall racing an uninstall commits only after the uninstall finished."""
        old = write_plugin(plugin_source_dir / "old", "fleet", source=SLOW_DESTROY_SOURCE.format(plugin_id="fleet", version="1.0.0"))
        new = write_plugin(plugin_source_dir / "new", "fleet", version="2.0.0")

        async def run():
            await manager.install_plugin(str(old))
            await manager.load_plugin("fleet")
            uninstall = asyncio.ensure_future(manager.uninstall_plugin("fleet"))
            await asyncio.sleep(0)
            await manager.install_plugin(str(new))
            await uninstall

        asyncio.run(run())

        installed, _ = plugin_dirs
        assert (installed / "fleet" / "plugin.json").exists()
        assert manager.registry.get_plugin_metadata("fleet").installed is True
        assert manager.registry.get_plugin_metadata("fleet").version == "2.0.0"
        assert manager.get_plugin_state("fleet") == PluginState.INSTALLED

    def test_option_like_spec_is_rejected(self, manager, plugin_dirs):
        with pytest.raises(InstallError, match="Invalid package spec"):
            asyncio.run(manager.install_plugin("-r/etc/requirements.txt"))

        installed, _ = plugin_dirs
        assert list(installed.iterdir()) == []


class TestTrustPolicy:
    """Tests for signature handling when sandboxing is enabled."""

    @pytest.fixture(scope="class")
    def private_key(self):
        return rsa.generate_private_key(public_exponent=65537, key_size=2048)

    def test_unsigned_package_installs_untrusted(self, plugin_dirs, tmp_path, plugin_source_dir):
        manager = _make_manager(plugin_dirs, tmp_path, sandbox_enabled=True)
        source = write_plugin(plugin_source_dir, "fleet")

        metadata = asyncio.run(manager.install_plugin(str(source)))

        assert metadata.trusted is False

    def test_signed_package_is_trusted(self, plugin_dirs, tmp_path, plugin_source_dir, private_key):
        manager = _make_manager(plugin_dirs, tmp_path, sandbox_enabled=True)
        manager.trust.add_trusted_key(private_key.public_key())
        source = write_plugin(plugin_source_dir, "fleet")
        sign_package(source, private_key)

        metadata = asyncio.run(manager.install_plugin(str(source)))

        assert metadata.trusted is True

    def test_tampered_package_is_rejected(self, plugin_dirs, tmp_path, plugin_source_dir, private_key):
        manager = _make_manager(plugin_dirs, tmp_path, sandbox_enabled=True)
        manager.trust.add_trusted_key(private_key.public_key())
        source = write_plugin(plugin_source_dir, "fleet")
        sign_package(source, private_key)
        (source / "plugin.py").write_text("raise SystemExit\n")

        with pytest.raises(SignatureError):
            asyncio.run(manager.install_plugin(str(source)))

        installed, _ = plugin_dirs
        assert not (installed / "fleet").exists()

    def test_required_signature_rejects_unsigned(self, plugin_dirs, tmp_path, plugin_source_dir):
        manager = _make_manager(plugin_dirs, tmp_path, sandbox_enabled=True, require_signature=True)
        source = write_plugin(plugin_source_dir, "fleet")

        with pytest.raises(SignatureError):
            asyncio.run(manager.install_plugin(str(source)))


class TestLifecycle:
    """Tests for load/enable/disable/unload/uninstall."""

    def test_full_lifecycle(self, manager, events, plugin_dirs):
        _, bundled = plugin_dirs
        write_plugin(bundled, "fleet")

        async def run():
            await manager.load_plugin("fleet")
            plugin = manager.get_plugin("fleet")
            assert manager.get_plugin_state("fleet") == PluginState.LOADED

            await manager.enable_plugin("fleet")
            assert manager.get_plugin_state("fleet") == PluginState.ENABLED
            assert manager.config_service.is_enabled("fleet")

            await manager.disable_plugin("fleet")
            assert manager.get_plugin_state("fleet") == PluginState.DISABLED
            assert not manager.config_service.is_enabled("fleet")

            await manager.unload_plugin("fleet")
            return plugin

        plugin = asyncio.run(run())

        assert plugin.calls == ["initialize", "enable", "disable", "destroy"]
        assert not manager.is_plugin_loaded("fleet")
        assert manager.get_plugin_state("fleet") == PluginState.INSTALLED
        assert _event_names(events) == ["pluginLoaded", "pluginEnabled", "pluginDisabled", "pluginUnloaded"]

    def test_load_unknown_plugin(self, manager):
        with pytest.raises(PluginNotFoundError):
            asyncio.run(manager.load_plugin("missing"))

    def test_missing_enable_is_rejected(self, manager, plugin_dirs):
        """Validation names the first missing member and nothing is loaded."""
        _, bundled = plugin_dirs
        write_plugin(bundled, "broken", source=MISSING_ENABLE_SOURCE)

        with pytest.raises(ValidationError, match="Plugin missing required method: enable"):
            asyncio.run(manager.load_plugin("broken"))

        assert not manager.is_plugin_loaded("broken")

    def test_missing_destroy_is_rejected(self, manager, plugin_dirs):
        _, bundled = plugin_dirs
        write_plugin(bundled, "broken", source=MISSING_DESTROY_SOURCE)

        with pytest.raises(ValidationError, match="destroy") as exc_info:
            asyncio.run(manager.load_plugin("broken"))

        assert exc_info.value.member == "destroy"

    def test_factory_entry_point_receives_config(self, manager, plugin_dirs):
        _, bundled = plugin_dirs
        write_plugin(bundled, "factory", source=FACTORY_SOURCE, entry_point="plugin:create_plugin")
        manager.config_service.update_plugin_config("factory", {"interval": 30})

        asyncio.run(manager.load_plugin("factory"))

        assert manager.get_plugin("factory").config == {"interval": 30}
        assert manager.get_plugin_context("factory").plugin_id == "factory"

    def test_operations_on_unloaded_plugin(self, manager, plugin_dirs):
        _, bundled = plugin_dirs
        write_plugin(bundled, "fleet")

        for operation in (manager.unload_plugin, manager.enable_plugin, manager.disable_plugin):
            with pytest.raises(NotLoadedError):
                asyncio.run(operation("fleet"))

    def test_failing_destroy_still_unloads(self, manager, events, plugin_dirs):
        """Bookkeeping is removed even when destroy() raises; the error propagates."""
        _, bundled = plugin_dirs
        write_plugin(bundled, "fragile", source=FAILING_DESTROY_SOURCE)

        async def run():
            await manager.load_plugin("fragile")
            with pytest.raises(RuntimeError, match="destroy failed"):
                await manager.unload_plugin("fragile")

        asyncio.run(run())

        assert not manager.is_plugin_loaded("fragile")
        assert manager.get_loaded_plugins() == []
        assert "error" in _event_names(events)
        assert "pluginUnloaded" in _event_names(events)

    def test_reload_gets_fresh_instance(self, manager, plugin_dirs):
        _, bundled = plugin_dirs
        write_plugin(bundled, "fleet")

        async def run():
            await manager.load_plugin("fleet")
            first = manager.get_plugin("fleet")
            await manager.unload_plugin("fleet")
            await manager.load_plugin("fleet")
            return first, manager.get_plugin("fleet")

        first, second = asyncio.run(run())

        assert first is not second
        assert second.calls == ["initialize"]

    def test_concurrent_load_and_unload_are_serialized(self, manager, plugin_dirs):
        """Unload waits for an in-progress load of the same id."""
        _, bundled = plugin_dirs
        write_plugin(bundled, "slow", source=SLOW_INIT_SOURCE)

        async def run():
            load = asyncio.ensure_future(manager.load_plugin("slow"))
            await asyncio.sleep(0)
            await manager.unload_plugin("slow")
            await load

        asyncio.run(run())

        assert not manager.is_plugin_loaded("slow")

    def test_uninstall_unloads_first(self, manager, events, plugin_source_dir, plugin_dirs):
        source = write_plugin(plugin_source_dir, "fleet")

        async def run():
            await manager.install_plugin(str(source))
            await manager.load_plugin("fleet")
            plugin = manager.get_plugin("fleet")
            await manager.uninstall_plugin("fleet")
            return plugin

        plugin = asyncio.run(run())

        installed, _ = plugin_dirs
        assert plugin.calls[-1] == "destroy"
        assert not (installed / "fleet").exists()
        assert manager.get_plugin_state("fleet") == PluginState.UNINSTALLED
        assert manager.registry.get_plugin_metadata("fleet").installed is False
        assert _event_names(events)[-2:] == ["pluginUnloaded", "pluginUninstalled"]

    def test_bundled_plugin_cannot_be_uninstalled(self, manager, plugin_dirs):
        _, bundled = plugin_dirs
        write_plugin(bundled, "fleet")

        with pytest.raises(InstallError):
            asyncio.run(manager.uninstall_plugin("fleet"))

        assert (bundled / "fleet").exists()


class TestStartupAndShutdown:
    """Tests for discovery, enabled-plugin startup and shutdown."""

    def test_discover_registers_plugins(self, manager, plugin_dirs):
        installed, bundled = plugin_dirs
        write_plugin(bundled, "fleet")
        write_plugin(installed, "payroll")

        assert manager.discover() == 2
        assert manager.registry.get_plugin_metadata("fleet").installed is True
        assert manager.registry.has("payroll")

    def test_load_enabled_starts_configured_plugins(self, manager, plugin_dirs):
        """Plugins marked enabled are loaded; failures do not stop the others."""
        _, bundled = plugin_dirs
        write_plugin(bundled, "fleet")
        write_plugin(bundled, "broken", source=MISSING_ENABLE_SOURCE)
        manager.config_service.enable("broken")
        manager.config_service.enable("fleet")

        started = asyncio.run(manager.load_enabled())

        assert started == ["fleet"]
        assert manager.get_plugin_state("fleet") == PluginState.ENABLED

    def test_statistics(self, manager, plugin_dirs):
        _, bundled = plugin_dirs
        write_plugin(bundled, "fleet")
        write_plugin(bundled, "payroll")

        async def run():
            await manager.load_plugin("fleet")
            await manager.enable_plugin("fleet")

        asyncio.run(run())
        stats = manager.get_statistics()

        assert stats["totalInstalled"] == 2
        assert stats["totalLoaded"] == 1
        assert stats["totalEnabled"] == 1
        assert stats["memoryUsage"] > 0
        assert stats["maxMemoryUsage"] == 512 * 1024 * 1024

    def test_shutdown_unloads_everything(self, manager, plugin_dirs):
        """Shutdown is best effort: one failing destroy does not stop the rest."""
        _, bundled = plugin_dirs
        write_plugin(bundled, "fleet")
        write_plugin(bundled, "fragile", source=FAILING_DESTROY_SOURCE)

        async def run():
            await manager.load_plugin("fragile")
            await manager.load_plugin("fleet")
            await manager.shutdown()

        asyncio.run(run())

        assert manager.get_loaded_plugins() == []
        assert manager.events.event_names() == []
