#!/usr/bin/env python3
"""Plugin management CLI tool."""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

load_dotenv()

from blacktop.constants import (
    BUNDLED_PLUGINS_DIR,
    PLUGIN_CATALOG_FILE,
    PLUGIN_CONFIG_FILE,
    PLUGIN_DIRECTORY,
    PLUGIN_TRUSTED_KEYS_DIR,
)
from blacktop.errors import BlacktopError
from blacktop.plugins.api import PluginApi
from blacktop.plugins.config import PluginConfigService, PluginManagerConfig
from blacktop.plugins.installer import PluginInstaller
from blacktop.plugins.manager import PluginManager
from blacktop.plugins.registry import PluginRegistry
from blacktop.plugins.trust import PluginTrustVerifier, sign_package
from blacktop.services.messaging_service import MessagingService
from blacktop.services.storage_service import InMemoryKeyValueStore

console = Console()


def get_installer() -> PluginInstaller:
    return PluginInstaller(PLUGIN_DIRECTORY, BUNDLED_PLUGINS_DIR)


def get_config() -> PluginConfigService:
    return PluginConfigService(PLUGIN_CONFIG_FILE)


def get_manager() -> PluginManager:
    """Manager with throwaway messaging/storage; enough for install and uninstall."""
    return PluginManager(
        config=PluginManagerConfig.from_env(),
        plugin_api=PluginApi(messaging=MessagingService(), storage=InMemoryKeyValueStore()),
        installer=get_installer(),
        config_service=get_config(),
    )


def fail(message: str) -> None:
    console.print(f"[red]{message}[/red]")
    sys.exit(1)


def cmd_list(args):
    """List all discovered plugins."""
    installer = get_installer()
    config = get_config()
    packages = installer.list_packages()

    if not packages:
        console.print("No plugins found.")
        return

    enabled_ids = config.get_enabled_list()

    table = Table(title="Plugins")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Source")
    table.add_column("Enabled")
    table.add_column("Version")

    for p in packages:
        table.add_row(
            p.id,
            p.manifest.name,
            p.manifest.type.value,
            p.source,
            "Yes" if p.id in enabled_ids else "No",
            p.manifest.version,
        )
    console.print(table)


def cmd_info(args):
    """Show detailed plugin information."""
    installer = get_installer()
    info = installer.get_info(args.plugin_id)
    if not info:
        fail(f"Plugin '{args.plugin_id}' not found.")

    manifest = info["manifest"]
    config = get_config()
    lines = [
        f"Name:        {manifest['name']}",
        f"Version:     {manifest['version']}",
        f"Type:        {manifest['type']}",
        f"Author:      {manifest['author']}",
        f"Description: {manifest['description']}",
        f"Source:      {info['source']}",
        f"Path:        {info['path']}",
        f"Entry Point: {manifest['entry_point']}",
        f"Enabled:     {config.is_enabled(args.plugin_id)}",
    ]
    if info["record"]:
        lines.append(f"Installed:   {info['record'].get('installed_at')} from {info['record'].get('spec')}")
    plugin_config = config.get_plugin_config(args.plugin_id)
    if plugin_config:
        lines.append(f"Config:      {json.dumps(plugin_config, indent=4, ensure_ascii=False)}")

    console.print(Panel("\n".join(lines), title=f"Plugin: {args.plugin_id}", border_style="blue"))


def cmd_enable(args):
    """Mark a plugin enabled; it is loaded at the next server start."""
    if get_installer().get_package(args.plugin_id) is None:
        fail(f"Plugin '{args.plugin_id}' not found.")
    get_config().enable(args.plugin_id)
    console.print(f"Plugin '{args.plugin_id}' enabled. Restart the service to take effect.")


def cmd_disable(args):
    """Mark a plugin disabled."""
    get_config().disable(args.plugin_id)
    console.print(f"Plugin '{args.plugin_id}' disabled. Restart the service to take effect.")


def cmd_install(args):
    """Install a plugin from a local path or a pip requirement."""
    manager = get_manager()
    try:
        metadata = asyncio.run(manager.install_plugin(args.source, args.version))
    except BlacktopError as e:
        fail(str(e))

    trust = {True: "trusted", False: "untrusted", None: "unverified"}[metadata.trusted]
    console.print(f"Plugin '{metadata.id}' {metadata.version} installed ({trust}).")
    console.print(f"Run 'python manage_plugins.py enable {metadata.id}' to enable it.")


def cmd_uninstall(args):
    """Remove an installed plugin."""
    manager = get_manager()
    try:
        asyncio.run(manager.uninstall_plugin(args.plugin_id))
    except BlacktopError as e:
        fail(str(e))
    console.print(f"Plugin '{args.plugin_id}' uninstalled.")


def cmd_search(args):
    """Search installed plugins and the marketplace catalog."""
    registry = PluginRegistry()
    for package in get_installer().list_packages():
        registry.register_plugin(package.manifest.to_metadata(installed=True))
    if PLUGIN_CATALOG_FILE:
        registry.load_catalog(PLUGIN_CATALOG_FILE)

    try:
        results = registry.search_plugins(args.query, args.type)
    except ValueError as e:
        fail(f"Invalid type filter: {e}")

    if not results:
        console.print(f"No plugins match '{args.query}'.")
        return

    table = Table(title=f"Search: {args.query}")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Category")
    table.add_column("Installed")
    for m in results:
        table.add_row(m.id, m.name, m.type.value, m.category, "Yes" if m.installed else "No")
    console.print(table)


def cmd_sign(args):
    """Sign a plugin directory with an RSA private key (PEM)."""
    from cryptography.hazmat.primitives.serialization import load_pem_private_key

    package_dir = Path(args.path).resolve()
    if not (package_dir / "plugin.json").exists():
        fail(f"No plugin.json found at {package_dir}")

    with open(args.key, "rb") as f:
        private_key = load_pem_private_key(f.read(), password=None)

    document = sign_package(package_dir, private_key, args.algorithm)
    console.print(f"Signed {package_dir.name} with key {document['key_id']}")


def cmd_verify(args):
    """Verify a plugin directory's signature against the trusted keys."""
    verifier = PluginTrustVerifier([], PLUGIN_TRUSTED_KEYS_DIR)
    check = verifier.verify_signature(Path(args.path).resolve())
    style = "green" if check.verified else "yellow"
    console.print(f"[{style}]{check.status.value}[/{style}]: {check.message}")
    if not check.verified:
        sys.exit(1)


def cmd_doctor(args):
    """Run health checks on the plugin system."""
    issues = []

    if not BUNDLED_PLUGINS_DIR.exists():
        issues.append(f"Bundled plugins directory missing: {BUNDLED_PLUGINS_DIR}")
    if not PLUGIN_DIRECTORY.exists():
        issues.append(f"Plugin directory missing: {PLUGIN_DIRECTORY}")

    if PLUGIN_CONFIG_FILE.exists():
        try:
            with open(PLUGIN_CONFIG_FILE) as f:
                json.load(f)
        except json.JSONDecodeError as e:
            issues.append(f"Plugin config file has invalid JSON: {e}")

    installer = get_installer()
    config = get_config()
    packages = installer.list_packages()
    enabled_ids = config.get_enabled_list()

    discovered_ids = {p.id for p in packages}
    for eid in enabled_ids:
        if eid not in discovered_ids:
            issues.append(f"Enabled plugin '{eid}' not found in any search path")

    for p in packages:
        entry_file = p.manifest_dir / Path(*p.manifest.entry_module.split("."))
        if not entry_file.with_suffix(".py").exists() and not (entry_file / "__init__.py").exists():
            issues.append(f"Plugin '{p.id}': entry point module missing: {p.manifest.entry_module}")

    if issues:
        console.print(f"[red]Found {len(issues)} issue(s):[/red]")
        for i, issue in enumerate(issues, 1):
            console.print(f"  {i}. {issue}")
        sys.exit(1)
    else:
        console.print(f"[green]All checks passed.[/green] {len(packages)} plugin(s) found, {len(enabled_ids)} enabled.")


def main():
    parser = argparse.ArgumentParser(description="Blacktop Blackout Plugin Manager")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # list
    subparsers.add_parser("list", help="List all plugins")

    # info
    info_parser = subparsers.add_parser("info", help="Show plugin details")
    info_parser.add_argument("plugin_id", help="Plugin ID")

    # enable
    enable_parser = subparsers.add_parser("enable", help="Enable a plugin")
    enable_parser.add_argument("plugin_id", help="Plugin ID")

    # disable
    disable_parser = subparsers.add_parser("disable", help="Disable a plugin")
    disable_parser.add_argument("plugin_id", help="Plugin ID")

    # install
    install_parser = subparsers.add_parser("install", help="Install a plugin from a local path or pip")
    install_parser.add_argument("source", help="Plugin directory or pip requirement")
    install_parser.add_argument("--version", help="Version to install")

    # uninstall
    uninstall_parser = subparsers.add_parser("uninstall", help="Remove an installed plugin")
    uninstall_parser.add_argument("plugin_id", help="Plugin ID")

    # search
    search_parser = subparsers.add_parser("search", help="Search plugins")
    search_parser.add_argument("query", help="Text to search for")
    search_parser.add_argument("--type", help="Module type filter")

    # sign
    sign_parser = subparsers.add_parser("sign", help="Sign a plugin directory")
    sign_parser.add_argument("path", help="Path to plugin directory")
    sign_parser.add_argument("--key", required=True, help="PEM private key file")
    sign_parser.add_argument("--algorithm", default="SHA256", choices=["SHA256", "SHA384", "SHA512"])

    # verify
    verify_parser = subparsers.add_parser("verify", help="Verify a plugin signature")
    verify_parser.add_argument("path", help="Path to plugin directory")

    # doctor
    subparsers.add_parser("doctor", help="Run health checks")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "list": cmd_list,
        "info": cmd_info,
        "enable": cmd_enable,
        "disable": cmd_disable,
        "install": cmd_install,
        "uninstall": cmd_uninstall,
        "search": cmd_search,
        "sign": cmd_sign,
        "verify": cmd_verify,
        "doctor": cmd_doctor,
    }

    commands[args.command](args)


if __name__ == "__main__":
    main()
