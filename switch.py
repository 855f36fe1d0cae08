#!/usr/bin/env python3
"""
phpswitch - Switch between Homebrew-installed PHP versions.

Usage:
    switch.py --switch 8.2          # Link 8.2 and update the shell startup file
    switch.py --project             # Switch to the version the project declares
    switch.py --list [--json]       # Show installable/installed versions
    switch.py --install 8.3         # Install a version
    switch.py --auto-mode           # Used by the shell hook (prints a PATH command)
"""

import argparse
import json
import os
import sys

# Add current directory to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from phpswitch import __version__
from phpswitch.autoswitch import DirectoryCache, auto_switch
from phpswitch.brew import Homebrew
from phpswitch.config import Config, load_config, save_config, update_config_value, validate_config
from phpswitch.diagnostics import missing_required
from phpswitch.errors import PhpSwitchError, ValidationError
from phpswitch.logging_config import setup_logging
from phpswitch.render import render_version_list, show_status, version_list_data
from phpswitch.resolver import write_project_version
from phpswitch.shell import detect_dialect
from phpswitch.switcher import Switcher
from phpswitch.versions import normalize

CURRENT = "current"


def parse_version_arg(text: str, brew: Homebrew):
    """Normalize a version given on the command line ("8.2", "8", "php@8.2")."""
    return normalize(text, installed=brew.list_installed())


def cmd_list(args: argparse.Namespace, switcher: Switcher) -> int:
    """List installable versions with installed/active markers."""
    available = switcher.version_cache().get_available()
    installed = switcher.brew.list_installed()
    current = switcher.brew.current_linked_version()

    if args.json:
        print(json.dumps(version_list_data(available, installed, current), indent=2))
        return 0

    for line in render_version_list(available, installed, current):
        print(line)
    print("")
    print("* active   + installed")
    return 0


def cmd_current(args: argparse.Namespace, switcher: Switcher) -> int:
    current = switcher.brew.current_linked_version()
    if args.json:
        print(json.dumps({"current": str(current) if current else None}))
        return 0 if current else 1
    if current is None:
        show_status("warning", "No Homebrew PHP version is linked")
        return 1
    print(current)
    return 0


def report_switch(args: argparse.Namespace, result) -> int:
    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
        return 0

    if result.backup:
        show_status("info", f"Backup saved: {result.backup.path}")
    for line in result.instructions:
        show_status("info", line)
    return 0


def cmd_switch(args: argparse.Namespace, switcher: Switcher) -> int:
    version = parse_version_arg(args.switch, switcher.brew)
    available = switcher.version_cache().get_available()
    if version not in available:
        show_status("warning", f"{version} is not in the list of known installable versions")
    return report_switch(args, switcher.switch(version, install_missing=args.yes))


def cmd_project(args: argparse.Namespace, switcher: Switcher) -> int:
    return report_switch(args, switcher.switch_project(install_missing=args.yes))


def cmd_get_project_version(args: argparse.Namespace, switcher: Switcher) -> int:
    project = switcher.project_version()
    if args.json:
        print(json.dumps(project.to_dict() if project else None, indent=2))
        return 0 if project else 1
    if project is None:
        show_status("info", "No PHP version declared for this directory")
        return 1
    print(project.version)
    return 0


def cmd_set_project(args: argparse.Namespace, switcher: Switcher) -> int:
    version = parse_version_arg(args.set_project, switcher.brew)
    path = write_project_version(version)
    DirectoryCache(switcher.config.cache_path).clear()
    show_status("success", f"Project version set to {version} in {path}")
    return 0


def cmd_auto_mode(args: argparse.Namespace, config: Config) -> int:
    """Run by the shell hook; stdout carries only the PATH command to eval."""
    command = auto_switch(os.getcwd(), Homebrew(), config, detect_dialect())
    if command:
        print(command)
    return 0


def cmd_clear_cache(args: argparse.Namespace, switcher: Switcher) -> int:
    cleared = switcher.version_cache().invalidate()
    cleared = DirectoryCache(switcher.config.cache_path).clear() or cleared
    show_status("success" if cleared else "info", "Cache cleared" if cleared else "Cache was already empty")
    return 0


def cmd_refresh_cache(args: argparse.Namespace, switcher: Switcher) -> int:
    versions = switcher.version_cache().force_refresh()
    show_status("success", f"Cache refreshed: {len(versions)} versions available")
    return 0


def cmd_config(args: argparse.Namespace, config: Config) -> int:
    key, sep, value = args.config.partition("=")
    if not sep:
        raise ValidationError(f"Expected KEY=VALUE, got {args.config!r}")
    try:
        updated = update_config_value(config, key.strip(), value.strip())
    except ValueError as e:
        raise ValidationError(str(e))

    path = save_config(updated)
    show_status("success", f"Set {key.strip()} in {path}")
    for warning in validate_config(updated):
        show_status("warning", warning)
    return 0


def cmd_show_config(args: argparse.Namespace, config: Config) -> int:
    data = config.to_dict()
    if args.json:
        print(json.dumps(data, indent=2))
        return 0
    print(f"# {config.source or 'defaults'}")
    for key, value in data.items():
        print(f"{key}: {value}")
    for warning in validate_config(config):
        show_status("warning", warning)
    return 0


def cmd_auto_switch(args: argparse.Namespace, switcher: Switcher, enabled: bool) -> int:
    _, patch = switcher.set_auto_switch(enabled)
    state = "enabled" if enabled else "disabled"
    show_status("success", f"Auto-switching {state}")
    if patch is None:
        show_status("info", "The shell hook is added the next time you switch versions")
    else:
        show_status("info", f"Open a new terminal or source {patch.path} to apply")
    return 0


def cmd_remove_shell_block(args: argparse.Namespace, switcher: Switcher) -> int:
    profile, removed = switcher.remove_profile_block()
    if removed:
        show_status("success", f"Removed the phpswitch block from {profile.path}")
    else:
        show_status("info", f"No phpswitch block found in {profile.path}")
    return 0


def cmd_check_dependencies(args: argparse.Namespace, switcher: Switcher) -> int:
    statuses = switcher.check_dependencies()
    missing = missing_required(statuses)
    if args.json:
        print(json.dumps([s.to_dict() for s in statuses], indent=2))
        return 1 if missing else 0

    for status in statuses:
        if status.found:
            show_status("success", f"{status.name}: {status.path}")
        else:
            level = "error" if status.required else "warning"
            show_status(level, f"{status.name} not found. {status.hint}")
    return 1 if missing else 0


def print_path_diagnosis(diagnosis) -> None:
    print("PATH entries:")
    for index, entry in enumerate(diagnosis.entries, start=1):
        print(f"  {index:>2}  {entry}")
    print("")
    print("php binaries on PATH:")
    for binary in diagnosis.binaries:
        kind = f"symlink -> {binary.symlink_target}" if binary.symlink_target else "binary"
        print(f"  {binary.path} ({kind})")
        print(f"      {binary.version_line or 'version unknown'}")
    print("")
    print(f"Active php:   {diagnosis.active or 'none'}")
    print(f"Linked:       {diagnosis.linked or 'none'}")
    print(f"Expected php: {diagnosis.expected or 'unknown'}")


def cmd_diagnose(args: argparse.Namespace, switcher: Switcher) -> int:
    diagnosis = switcher.diagnose_path()
    if args.json:
        print(json.dumps(diagnosis.to_dict(), indent=2))
        return 0 if diagnosis.healthy else 1

    print_path_diagnosis(diagnosis)
    print("")
    for warning in diagnosis.warnings:
        show_status("warning", warning)
    if diagnosis.healthy:
        show_status("success", "php on PATH is the linked version")
    else:
        show_status("info", "Open a new terminal, or run 'hash -r' (bash/zsh) or 'rehash' (fish)")
    return 0 if diagnosis.healthy else 1


def cmd_diagnose_environment(args: argparse.Namespace, switcher: Switcher) -> int:
    report = switcher.diagnose_environment()
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
        return 0 if not report.warnings else 1

    print_path_diagnosis(report.path)
    print("")
    print("Installed versions: " + (", ".join(str(v) for v in report.installed) or "none"))
    print("Homebrew opt links:")
    for name, target in report.opt_links.items():
        print(f"  {name} -> {target}")
    print("Startup file PATH entries mentioning php:")
    for mention in report.startup_mentions:
        print(f"  {mention.path}:{mention.line_number}: {mention.text}")
    print(f"Loaded modules ({len(report.modules)}): {', '.join(report.modules) or 'none'}")
    print("PHP services:")
    for service, state in report.services.items():
        print(f"  {service}: {state}")
    print("")
    for warning in report.warnings:
        show_status("warning", warning)
    return 0 if not report.warnings else 1


def cmd_extensions(args: argparse.Namespace, switcher: Switcher) -> int:
    version = None if args.extensions == CURRENT else parse_version_arg(args.extensions, switcher.brew)
    report = switcher.extensions(version)
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
        return 0

    show_status("info", f"Extensions for {report.version}")
    print("Loaded modules:")
    for module in report.modules:
        print(f"- {module}")
    print("")
    if report.ini_dir is None:
        print("Configuration directory unknown")
    elif report.ini_files:
        print(f"Extension configuration in {report.ini_dir / 'conf.d'}:")
        for name in report.ini_files:
            print(f"- {name}")
    else:
        print(f"No .ini files in {report.ini_dir / 'conf.d'}")
    return 0


def cmd_fix_permissions(args: argparse.Namespace, switcher: Switcher) -> int:
    repair = switcher.fix_cache_permissions()
    if args.json:
        print(json.dumps(repair.to_dict(), indent=2))
        return 0

    messages = {
        "none": f"Cache directory {repair.directory} is already writable",
        "created": f"Created cache directory {repair.directory}",
        "chmod": f"Fixed permissions of {repair.directory}",
        "chown": f"Took ownership of {repair.directory}",
        "relocated": f"Cache now lives in {repair.directory} (saved to {repair.config_path})",
    }
    show_status("success", messages[repair.action])
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="phpswitch",
        description="Switch between Homebrew-installed PHP versions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    actions = parser.add_mutually_exclusive_group()
    actions.add_argument("--switch", "-s", metavar="VERSION", help="Switch to a version (8.2, 8, php@8.2)")
    actions.add_argument("--project", "-p", action="store_true", help="Switch to the project's declared version")
    actions.add_argument("--install", metavar="VERSION", help="Install a version")
    actions.add_argument("--uninstall", metavar="VERSION", help="Uninstall a version")
    actions.add_argument("--list", "-l", action="store_true", help="List available and installed versions")
    actions.add_argument("--current", "-c", action="store_true", help="Print the active version")
    actions.add_argument("--clear-cache", action="store_true", help="Delete cached version data")
    actions.add_argument("--refresh-cache", action="store_true", help="Search Homebrew again now")
    actions.add_argument("--get-project-version", action="store_true",
                         help="Print the version the current project declares")
    actions.add_argument("--set-project", metavar="VERSION", help="Write .php-version in the current directory")
    actions.add_argument("--auto-mode", action="store_true", help=argparse.SUPPRESS)
    actions.add_argument("--enable-auto-switch", action="store_true", help="Install the directory-change hook")
    actions.add_argument("--disable-auto-switch", action="store_true", help="Remove the directory-change hook")
    actions.add_argument("--remove-shell-block", action="store_true",
                         help="Remove the phpswitch block from the shell startup file")
    actions.add_argument("--config", metavar="KEY=VALUE", help="Change a configuration value")
    actions.add_argument("--show-config", action="store_true", help="Print the effective configuration")
    actions.add_argument("--check-dependencies", action="store_true", help="Check for brew and other required commands")
    actions.add_argument("--diagnose", action="store_true", help="Explain which php PATH resolves to")
    actions.add_argument("--diagnose-environment", action="store_true",
                         help="Report installs, links, startup files, modules and services")
    actions.add_argument("--extensions", nargs="?", const=CURRENT, metavar="VERSION",
                         help="List loaded modules and conf.d ini files (linked version by default)")
    actions.add_argument("--fix-permissions", action="store_true", help="Make the cache directory writable")

    parser.add_argument("--config-file", metavar="PATH", help="Use this configuration file")
    parser.add_argument("--json", action="store_true", help="Machine-readable output")
    parser.add_argument("--yes", "-y", action="store_true", help="Answer yes to every prompt")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument("--log-file", metavar="PATH", help="Also write logs to this file")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def dispatch(args: argparse.Namespace) -> int:
    try:
        config = load_config(args.config_file, verbose=args.verbose)
    except ValueError as e:
        raise ValidationError(str(e), remediation="Check the file passed to --config-file")

    if args.auto_mode:
        return cmd_auto_mode(args, config)
    if args.config:
        return cmd_config(args, config)
    if args.show_config:
        return cmd_show_config(args, config)

    switcher = Switcher(config, Homebrew(verbose=args.verbose), assume_yes=args.yes)

    if args.switch:
        return cmd_switch(args, switcher)
    if args.project:
        return cmd_project(args, switcher)
    if args.install:
        switcher.install(parse_version_arg(args.install, switcher.brew))
        return 0
    if args.uninstall:
        switcher.uninstall(parse_version_arg(args.uninstall, switcher.brew))
        return 0
    if args.current:
        return cmd_current(args, switcher)
    if args.clear_cache:
        return cmd_clear_cache(args, switcher)
    if args.refresh_cache:
        return cmd_refresh_cache(args, switcher)
    if args.get_project_version:
        return cmd_get_project_version(args, switcher)
    if args.set_project:
        return cmd_set_project(args, switcher)
    if args.enable_auto_switch:
        return cmd_auto_switch(args, switcher, True)
    if args.disable_auto_switch:
        return cmd_auto_switch(args, switcher, False)
    if args.remove_shell_block:
        return cmd_remove_shell_block(args, switcher)
    if args.check_dependencies:
        return cmd_check_dependencies(args, switcher)
    if args.diagnose:
        return cmd_diagnose(args, switcher)
    if args.diagnose_environment:
        return cmd_diagnose_environment(args, switcher)
    if args.extensions:
        return cmd_extensions(args, switcher)
    if args.fix_permissions:
        return cmd_fix_permissions(args, switcher)

    # Default: list
    return cmd_list(args, switcher)


def main(argv=None) -> int:
    """Main entry point for phpswitch."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # The shell hook evals stdout; auto mode stays silent unless verbose
    setup_logging(verbose=args.verbose, quiet=args.auto_mode and not args.verbose, log_file=args.log_file)

    try:
        return dispatch(args)
    except PhpSwitchError as e:
        show_status("error", e.message, stream=sys.stderr)
        if e.remediation:
            show_status("info", e.remediation, stream=sys.stderr)
        return 1


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(130)
