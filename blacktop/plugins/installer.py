"""Plugin installer - puts plugin bundles on disk and imports their entry points."""

import asyncio
import json
import logging
import shutil
import sys
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, NoReturn, Optional

from blacktop.errors import InstallError, PluginNotFoundError
from blacktop.plugins.discovery import PluginDiscovery, PluginPackage
from blacktop.plugins.events import EventEmitter
from blacktop.plugins.lifecycle import import_entry_point, release_entry_point
from blacktop.plugins.manifest import PluginManifest
from blacktop.plugins.trust import INSTALL_RECORD_FILE, compute_package_digest

logger = logging.getLogger(__name__)

# Called with the staged package before it is committed; raising aborts the install
PackageVerifier = Callable[[Path, PluginManifest], None]


@dataclass
class StagedPackage:
    """A fetched and verified bundle waiting to be moved into place."""

    spec: str
    version: Optional[str]
    source_kind: str
    staging: Path
    manifest: PluginManifest


class PluginInstaller:
    """Installs, resolves and removes plugin bundles.

    Two sources are supported: a local directory containing ``plugin.json`` (copied
    into the plugin directory) and anything else, which is treated as a pip
    requirement installed with ``pip install --target``. Bundled plugins are
    resolvable but cannot be uninstalled.

    Emits ``beforeInstall``, ``installed`` and ``error`` on :attr:`events`.
    """

    def __init__(self, plugin_directory: Path, bundled_dir: Optional[Path] = None):
        self.plugin_directory = plugin_directory
        self.bundled_dir = bundled_dir
        self.events = EventEmitter()

        search_paths = [(plugin_directory, "installed")]
        if bundled_dir is not None:
            search_paths.append((bundled_dir, "bundled"))
        self.discovery = PluginDiscovery(search_paths)

    async def install(
        self,
        package_spec: str,
        version: Optional[str] = None,
        verify: Optional[PackageVerifier] = None,
    ) -> PluginPackage:
        """Install a plugin bundle.

        Args:
            package_spec: Local plugin directory or pip requirement
            version: Optional version pin (pip installs only)
            verify: Optional check run on the staged package

        Returns:
            The installed package

        Raises:
            InstallError: Installation failed; nothing is left behind
        """
        staged = await self.stage(package_spec, version, verify)
        return self.commit(staged)

    async def stage(
        self,
        package_spec: str,
        version: Optional[str] = None,
        verify: Optional[PackageVerifier] = None,
    ) -> StagedPackage:
        """Fetch and verify a bundle into a staging directory next to the plugin directory.

        Nothing under the plugin's own install directory is touched until
        :meth:`commit`, so staging needs no lock on the plugin id.
        """
        if package_spec.startswith("-"):
            error = InstallError(f"Invalid package spec: {package_spec}")
            self.events.emit("error", error)
            raise error

        self.events.emit("beforeInstall", package_spec)
        self.plugin_directory.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=".staging-", dir=str(self.plugin_directory)))

        try:
            source_path = Path(package_spec).expanduser()
            if source_path.is_dir():
                source_kind = "local"
                shutil.copytree(
                    source_path,
                    staging,
                    dirs_exist_ok=True,
                    ignore=shutil.ignore_patterns("__pycache__", "*.pyc", INSTALL_RECORD_FILE),
                )
            else:
                source_kind = "pip"
                await self._run_pip(package_spec, version, staging)

            package = self.discovery.discover_single(staging, "installed")
            if package is None:
                raise InstallError(f"No valid plugin.json found in {package_spec}")

            manifest = package.manifest
            if version and source_kind == "local" and manifest.version != version:
                logger.warning(
                    f"Requested version {version} of {manifest.id} but local bundle is {manifest.version}"
                )

            if verify is not None:
                verify(staging, manifest)
        except Exception as e:
            self._fail(staging, package_spec, e)

        return StagedPackage(
            spec=package_spec,
            version=version,
            source_kind=source_kind,
            staging=staging,
            manifest=manifest,
        )

    def commit(self, staged: StagedPackage) -> PluginPackage:
        """Move a staged bundle into place, replacing any previous installation."""
        manifest = staged.manifest
        dest = self.plugin_directory / manifest.id
        try:
            if dest.exists():
                logger.info(f"Replacing existing installation of {manifest.id}")
                shutil.rmtree(dest)
                release_entry_point(manifest)
            shutil.move(str(staged.staging), str(dest))

            self._write_record(dest, {
                "id": manifest.id,
                "spec": staged.spec,
                "requested_version": staged.version,
                "version": manifest.version,
                "source": staged.source_kind,
                "installed_at": datetime.now(timezone.utc).isoformat(),
                "digest": compute_package_digest(dest),
            })
        except Exception as e:
            self._fail(staged.staging, staged.spec, e)

        installed = self.discovery.discover_single(dest, "installed")
        logger.info(f"Installed plugin '{manifest.id}' to {dest}")
        self.events.emit("installed", manifest.id)
        return installed

    def discard(self, staged: StagedPackage) -> None:
        """Drop a staged bundle that will not be committed."""
        self._discard(staged.staging)

    def _fail(self, staging: Path, package_spec: str, e: Exception) -> NoReturn:
        self._discard(staging)
        error = e if isinstance(e, InstallError) else InstallError(f"Failed to install {package_spec}: {e}")
        self.events.emit("error", error)
        if error is e:
            raise error
        raise error from e

    def require(self, plugin_id: str) -> Any:
        """Import the entry point of an installed or bundled plugin.

        Raises:
            PluginNotFoundError: No bundle with this id
            ValidationError: The entry point cannot be imported
        """
        package = self.get_package(plugin_id)
        if package is None:
            raise PluginNotFoundError(plugin_id, f"Plugin {plugin_id} is not installed")
        return import_entry_point(package.manifest, package.manifest_dir)

    async def uninstall(self, plugin_id: str) -> None:
        """Remove an installed plugin bundle from disk."""
        package = self.get_package(plugin_id)
        if package is None:
            raise PluginNotFoundError(plugin_id, f"Plugin {plugin_id} is not installed")
        if package.source == "bundled":
            raise InstallError(f"Plugin {plugin_id} is bundled with the application and cannot be uninstalled")

        shutil.rmtree(package.root)
        release_entry_point(package.manifest)
        logger.info(f"Removed plugin files for {plugin_id} at {package.root}")

    def list(self) -> List[str]:
        """Ids of every installed and bundled plugin."""
        return [p.id for p in self.discovery.discover_all()]

    def list_packages(self) -> List[PluginPackage]:
        return self.discovery.discover_all()

    def get_package(self, plugin_id: str) -> Optional[PluginPackage]:
        return self.discovery.find(plugin_id)

    def get_info(self, plugin_id: str) -> Optional[Dict[str, Any]]:
        """Manifest, location and install record of a plugin."""
        package = self.get_package(plugin_id)
        if package is None:
            return None
        return {
            "manifest": package.manifest.model_dump(mode="json"),
            "source": package.source,
            "path": str(package.root),
            "record": self.read_record(package.root),
        }

    @staticmethod
    def read_record(root: Path) -> Optional[Dict[str, Any]]:
        record_file = root / INSTALL_RECORD_FILE
        if not record_file.exists():
            return None
        try:
            with open(record_file, "r", encoding="utf-8") as f:
                return json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.error(f"Error reading install record {record_file}: {e}")
            return None

    @staticmethod
    def _write_record(root: Path, record: Dict[str, Any]) -> None:
        with open(root / INSTALL_RECORD_FILE, "w", encoding="utf-8") as f:
            json.dump(record, f, indent=2, ensure_ascii=False)

    @staticmethod
    def _discard(staging: Path) -> None:
        if staging.exists():
            shutil.rmtree(staging, ignore_errors=True)

    async def _run_pip(self, package_spec: str, version: Optional[str], target: Path) -> None:
        requirement = f"{package_spec}=={version}" if version else package_spec
        cmd = [
            sys.executable, "-m", "pip", "install",
            "--no-deps", "--disable-pip-version-check", "--no-input",
            "--target", str(target),
            requirement,
        ]
        logger.info(f"Running pip for {requirement}")
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            detail = (stderr or stdout).decode("utf-8", errors="replace").strip()
            raise InstallError(f"pip install {requirement} failed: {detail[-500:]}")
