#!/usr/bin/env python3
"""Z-Wave Lock Controller – Main Entry Point.

Controls Z-Wave door locks through a Z-Wave JS server: lock/unlock,
verified user code management, pairing and diagnostics, from the command
line, an interactive shell or the REST API and web dashboard.

Usage:
    python3 app.py                         # Run the REST API and dashboard
    python3 app.py interactive             # Interactive shell
    python3 app.py list                    # List nodes
    python3 app.py lock 8                  # Lock node 8
    python3 app.py set-code 8 3 4321 Guest # Set and verify a user code
    python3 app.py diagnostics             # Network diagnostics
    python3 app.py --help                  # All commands

Environment:
    ZWAVE_SERVER_URL      Z-Wave JS server URL (overrides config)
    ZWAVE_LOCK_WEB_PORT   API port (overrides config)
    CODE_ENCRYPTION_KEY   64 hex characters, key for stored PINs

Exit codes:
    0 ok, 1 error, 2 invalid input, 3 node/command class not found,
    4 device unreachable, 5 driver not ready, 6 configuration error,
    7 code rejected, 8 code rejected as likely duplicate
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import logging
import signal
import sys

import commands
import inspection
import pairing
from config import Config
from const import CODE_ENCRYPTION_KEY_ENV
from context import AppContext
from dashboard import Dashboard
from errors import (
    CommandRejectedError,
    ConfigError,
    InvalidFormatError,
    NotFoundError,
    NotReadyError,
    TransportError,
    UnreachableError,
    ZWaveLockError,
)
from models import SetCodeOutcome

_LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INVALID = 2
EXIT_NOT_FOUND = 3
EXIT_UNREACHABLE = 4
EXIT_NOT_READY = 5
EXIT_CONFIG = 6
EXIT_REJECTED = 7
EXIT_DUPLICATE = 8

ERROR_EXIT_CODES = (
    (InvalidFormatError, EXIT_INVALID),
    (CommandRejectedError, EXIT_REJECTED),
    (NotFoundError, EXIT_NOT_FOUND),
    (UnreachableError, EXIT_UNREACHABLE),
    (NotReadyError, EXIT_NOT_READY),
    (TransportError, EXIT_NOT_READY),
    (ConfigError, EXIT_CONFIG),
)

SET_CODE_EXIT_CODES = {
    SetCodeOutcome.CONFIRMED: EXIT_OK,
    SetCodeOutcome.REJECTED_UNKNOWN_REASON: EXIT_REJECTED,
    SetCodeOutcome.REJECTED_LIKELY_DUPLICATE: EXIT_DUPLICATE,
    SetCodeOutcome.DEVICE_UNREACHABLE: EXIT_UNREACHABLE,
}

RULE = "━" * 57


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    # Reduce noise from libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("zwave_js_server").setLevel(
        logging.INFO if verbose else logging.WARNING
    )


def exit_code_for(err: ZWaveLockError) -> int:
    for error_type, code in ERROR_EXIT_CODES:
        if isinstance(err, error_type):
            return code
    return EXIT_ERROR


async def _prompt(text: str, secret: bool = False) -> str:
    """Read a line without blocking the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, getpass.getpass if secret else input, text)


async def _prompt_dsk(dsk: str) -> str:
    print(f"\n🔑 Device DSK: {dsk}")
    print("   Enter the first 5 digits printed on the device label.")
    return await _prompt("   DSK PIN: ")


async def _wait_for_signal(timeout: float | None = None) -> None:
    """Wait for Ctrl-C / SIGTERM, or the timeout."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    try:
        await asyncio.wait_for(stop.wait(), timeout)
    except asyncio.TimeoutError:
        pass
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)


def _print_fields(fields: dict, indent: str = "   ") -> None:
    width = max((len(str(k)) for k in fields), default=0) + 1
    for key, value in fields.items():
        if isinstance(value, (dict, list)):
            value = json.dumps(value)
        print(f"{indent}{str(key) + ':':<{width + 1}} {value}")


# Nodes and network


async def cmd_list(ctx: AppContext, args: argparse.Namespace) -> int:
    """List all nodes in the network."""
    nodes = await inspection.list_nodes(ctx)
    print("\n📋 Z-Wave Network Nodes:\n")
    print(RULE)
    if not nodes:
        print("\nNo nodes found. Pair your lock with: pair\n")
        return EXIT_OK
    for node in nodes:
        lock = " 🔐" if node["is_lock"] is True else ""
        print(f"\nNode {node['node_id']}: {node['name']}{lock}")
        _print_fields({
            "Manufacturer": node["manufacturer"],
            "Product": node["product"],
            "Power": node["power"],
            "Status": node["status"],
            "Secure": f"{node['secure']} ({node['security_class']})",
        })
    print(f"\n{RULE}\n")
    return EXIT_OK


async def cmd_scan(ctx: AppContext, args: argparse.Namespace) -> int:
    """Show controller information and a node summary."""
    info = await inspection.network_info(ctx)
    print("\n🔍 Z-Wave Network\n")
    _print_fields(info)
    return await cmd_list(ctx, args)


async def cmd_inspect(ctx: AppContext, args: argparse.Namespace) -> int:
    report = await inspection.inspect_node(ctx, args.node_id)
    print(f"\n🔎 Node {args.node_id}\n")
    for section, fields in report.items():
        print(f"{section.upper()}:")
        if isinstance(fields, dict):
            _print_fields(fields)
        elif isinstance(fields, list):
            for cc in fields:
                secure = " (secure)" if cc.get("secure") else ""
                print(f"   {cc['id']:>3} {cc['name']} v{cc['version']}{secure}")
        else:
            print(f"   {fields}")
        print()
    return EXIT_OK


async def cmd_diagnostics(ctx: AppContext, args: argparse.Namespace) -> int:
    """Run network diagnostics."""
    report = await inspection.run_diagnostics(ctx)
    print("\n🔧 Z-Wave Network Diagnostics\n")
    print(RULE)
    print("\nCONTROLLER STATUS:")
    _print_fields(report["controller"])
    print("\nSECURITY KEYS:")
    for name, configured in report["security_keys"].items():
        print(f"   {name + ':':<20} {'✓ Configured' if configured else '✗ Missing'}")
    print("\nNODE DIAGNOSTICS:")
    for node in report["nodes"]:
        print(f"\n   Node {node['node_id']}: {node['product']}")
        _print_fields({
            "Status": node["status"],
            "Ready": node["ready"],
            "Interview": node["interview_stage"],
            "Secure": f"{node['secure']} ({node['security_class']})",
            "Power": node["power"],
            "Door Lock CC": node["door_lock_cc"],
            "User Code CC": node["user_code_cc"],
        }, indent="      ")
    print("\nRECOMMENDATIONS:")
    if report["recommendations"]:
        for advice in report["recommendations"]:
            print(f"   ⚠️  {advice}")
    else:
        print("   ✓ All door locks are properly secured!")
    print(f"\n{RULE}\n")
    return EXIT_OK


async def cmd_test(ctx: AppContext, args: argparse.Namespace) -> int:
    """Test that a lock answers."""
    report = await inspection.test_lock(ctx, args.node_id)
    print(f"\n🧪 Testing lock, node {args.node_id}\n")
    _print_fields({
        "Ready": report["ready"],
        "Secure": report["secure"],
        "Status": report["status"],
        "Door Lock CC": report["door_lock_cc"],
        "Ping": report["ping"],
        "Lock state": report["lock_state"],
    })
    if report.get("ping_error"):
        print(f"   ✗ Ping failed: {report['ping_error']} (the lock may be asleep)")
    print("\nNEXT STEPS:")
    for step in report["next_steps"]:
        print(f"   - {step}")
    print()
    return EXIT_OK if report["door_lock_cc"] else EXIT_NOT_FOUND


async def cmd_status(ctx: AppContext, args: argparse.Namespace) -> int:
    """Show lock status."""
    report = await commands.get_status(ctx, args.node_id)
    battery = f"{report.battery_level}%" if report.battery_level is not None else "Unknown"
    print(f"\n📊 Status for node {args.node_id}:\n")
    _print_fields({
        "Lock state": f"{report.lock_state} ({commands.lock_mode_name(report.current_mode)})",
        "Battery": battery,
        "Device": report.product,
        "Manufacturer": report.manufacturer,
        "Status": "Online" if report.online else "Offline",
        "Security": report.security_class,
    })
    print()
    return EXIT_OK


async def cmd_reinterview(ctx: AppContext, args: argparse.Namespace) -> int:
    await commands.reinterview_node(ctx, args.node_id)
    print(f"✓ Re-interview of node {args.node_id} started")
    return EXIT_OK


async def cmd_wait_interview(ctx: AppContext, args: argparse.Namespace) -> int:
    node = await ctx.node(args.node_id)
    timeout = args.timeout or ctx.config.timing.interview_timeout_sec
    print(f"⏳ Waiting up to {timeout:g}s for node {args.node_id} interview...")
    if await inspection.wait_for_interview(node, timeout):
        print("✅ Interview complete")
    else:
        print("⏳ Interview still incomplete. Wake the device and try again.")
    return EXIT_OK


async def cmd_listen(ctx: AppContext, args: argparse.Namespace) -> int:
    """Print node events until interrupted."""
    await ctx.session()
    target = f"node {args.node_id}" if args.node_id else "all nodes"
    print(f"\n👂 Listening for events from {target} (Ctrl-C to stop)\n")

    def on_event(event) -> None:
        print(f"[{event.timestamp[11:19]}] node {event.node_id} {event.event}: {json.dumps(event.args)}")

    subscription = ctx.events.subscribe(args.node_id, on_event)
    try:
        await _wait_for_signal(args.duration)
    finally:
        subscription.cancel()
    return EXIT_OK


# Lock control


async def cmd_lock(ctx: AppContext, args: argparse.Namespace) -> int:
    print(f"🔒 Locking door (node {args.node_id})...")
    result = await commands.lock_door(ctx, args.node_id)
    print(f"✓ Lock command acknowledged, state: {result.state}\n")
    return EXIT_OK


async def cmd_unlock(ctx: AppContext, args: argparse.Namespace) -> int:
    print(f"🔓 Unlocking door (node {args.node_id})...")
    result = await commands.unlock_door(ctx, args.node_id)
    print(f"✓ Unlock command acknowledged, state: {result.state}\n")
    return EXIT_OK


# User codes


async def cmd_list_codes(ctx: AppContext, args: argparse.Namespace) -> int:
    print(f"\n🔑 Querying user codes on node {args.node_id}...")
    listing = await commands.get_user_codes(ctx, args.node_id, limit=args.limit)
    print(f"   {len(listing.slots)} occupied of {listing.max_slots} slots\n")
    for slot in listing.slots:
        label = f"  {slot.label}" if slot.label else ""
        print(f"   Slot {slot.slot:>2}: {slot.status_name}{label}")
    if listing.failed_slots:
        print(f"\n   ⚠️  No answer for slots {', '.join(map(str, listing.failed_slots))}")
    print()
    return EXIT_OK


async def cmd_stored_codes(ctx: AppContext, args: argparse.Namespace) -> int:
    codes = ctx.codes.list_all()
    print(f"\n📒 Stored codes ({ctx.codes.path}):\n")
    if not codes:
        print("   (none)")
    for entry in codes:
        print(f"   Slot {entry['slot']:>2}: {entry['label']}")
    print()
    return EXIT_OK


async def cmd_show_code(ctx: AppContext, args: argparse.Namespace) -> int:
    stored = ctx.codes.get(args.slot)
    if stored is None:
        raise NotFoundError(f"Slot {args.slot} is not stored")
    print(f"   Slot {stored.slot}: {stored.label}  PIN {stored.pin}")
    return EXIT_OK


async def cmd_set_code(ctx: AppContext, args: argparse.Namespace) -> int:
    pin = args.pin or await _prompt("PIN: ", secret=True)
    print(f"\n🔑 Setting code on node {args.node_id} slot {args.slot}...")
    result = await commands.set_user_code(ctx, args.node_id, args.slot, pin, label=args.label)
    for step in result.trace:
        mark = "✓" if step.ok else "✗"
        detail = f" ({step.detail})" if step.detail else ""
        print(f"   {mark} {step.step}{detail}")

    if result.outcome is SetCodeOutcome.CONFIRMED:
        print(f"\n✅ Code confirmed on slot {args.slot} and stored\n")
    elif result.outcome is SetCodeOutcome.REJECTED_LIKELY_DUPLICATE:
        slots = ", ".join(map(str, result.duplicate_slots))
        print(f"\n❌ Lock ignored the code: same PIN already stored in slot {slots}\n")
    elif result.outcome is SetCodeOutcome.REJECTED_UNKNOWN_REASON:
        print("\n❌ Lock ignored the code. Try a different PIN or check the code length.\n")
    else:
        print("\n⏳ Could not verify: the lock did not answer. Check again with list-codes.\n")
    return SET_CODE_EXIT_CODES[result.outcome]


async def cmd_delete_code(ctx: AppContext, args: argparse.Namespace) -> int:
    result = await commands.delete_user_code(ctx, args.node_id, args.slot)
    if result.device_cleared:
        print(f"✓ Slot {args.slot} cleared on node {args.node_id}")
    else:
        print(f"⚠️  Lock did not acknowledge clearing slot {args.slot}: {result.error}")
    if result.removed_from_store:
        print(f"✓ Slot {args.slot} removed from code store")
    return EXIT_OK


async def cmd_get_code_length(ctx: AppContext, args: argparse.Namespace) -> int:
    length = await commands.get_code_length(ctx, args.node_id)
    if length is None:
        print("⚠️  Lock did not report its code length")
    else:
        print(f"✓ User code length: {length} digits")
    return EXIT_OK


async def cmd_set_code_length(ctx: AppContext, args: argparse.Namespace) -> int:
    print(f"\n⚠️  Setting code length to {args.length} ERASES ALL USER CODES on node {args.node_id}")
    if not args.yes:
        answer = await _prompt("   Type 'yes' to continue: ")
        if answer.strip().lower() != "yes":
            print("Cancelled.")
            return EXIT_ERROR
    await commands.set_code_length(ctx, args.node_id, args.length)
    print(f"✓ Code length set to {args.length} digits")
    return EXIT_OK


# Pairing


def _print_inclusion(result) -> int:
    if result.node_id is None:
        print(f"\n⏳ {result.detail}\n")
        return EXIT_NOT_READY
    print(f"\n✅ Node {result.node_id} added")
    _print_fields({
        "Secure": f"{result.secure} ({result.security_class})",
        "Interview": "complete" if result.interview_complete else "incomplete",
    })
    if result.detail:
        print(f"   {result.detail}")
    print()
    return EXIT_OK


async def cmd_pair(ctx: AppContext, args: argparse.Namespace) -> int:
    strategy = "s0" if args.command == "pair-s0" else args.strategy
    print(f"\n📡 Inclusion ({strategy.upper()}) started. Put the lock in pairing mode...")
    result = await pairing.include_device(ctx, strategy, dsk_pin=_prompt_dsk)
    return _print_inclusion(result)


async def cmd_exclude(ctx: AppContext, args: argparse.Namespace) -> int:
    print("\n📡 Exclusion started. Put the device in exclusion mode...")
    node_id = await pairing.exclude_device(ctx)
    if node_id is None:
        print("⏳ No device was excluded before the timeout\n")
        return EXIT_NOT_READY
    print(f"✅ Node {node_id} excluded\n")
    return EXIT_OK


async def cmd_remove_node(ctx: AppContext, args: argparse.Namespace) -> int:
    await pairing.remove_failed_node(ctx, args.node_id)
    print(f"✅ Failed node {args.node_id} removed")
    return EXIT_OK


async def cmd_replace_node(ctx: AppContext, args: argparse.Namespace) -> int:
    print(f"\n📡 Replacing failed node {args.node_id}. Put the new device in pairing mode...")
    result = await pairing.replace_failed_node(
        ctx, args.node_id, args.strategy, dsk_pin=_prompt_dsk
    )
    return _print_inclusion(result)


# Configuration


async def cmd_config(ctx: AppContext, args: argparse.Namespace) -> int:
    """Show the effective configuration and persist requested changes.

    Changes are applied to the file as stored, so environment and command
    line overrides of this run are not written back.
    """
    config = ctx.config
    stored = Config.load(config.config_file)
    changed = False
    if args.server_url:
        stored.server_url = args.server_url
        stored.validate_server_url()
        config.server_url = args.server_url
        changed = True
    for target in (stored, config):
        if args.clear_before_set is not None:
            if args.clear_before_set not in target.clear_before_set:
                target.clear_before_set.append(args.clear_before_set)
            changed = True
        if args.no_clear_before_set is not None:
            target.clear_before_set = [
                n for n in target.clear_before_set if n != args.no_clear_before_set
            ]
            changed = True
    if changed:
        stored.save()
    print(f"\n⚙️  Configuration ({config.config_file}):\n")
    data = config.to_dict()
    data["security_keys"] = ", ".join(config.security_keys.configured()) or "none"
    _print_fields(data)
    print()
    return EXIT_OK


async def cmd_keys(ctx: AppContext, args: argparse.Namespace) -> int:
    """Print the security keys for the Z-Wave JS server configuration."""
    print("\n🔐 Security keys (pass these to the Z-Wave JS server):\n")
    print(json.dumps({"securityKeys": ctx.config.security_keys.to_dict()}, indent=2))
    print("\n⚠️  Back these up. Losing them means re-pairing every secure device.\n")
    return EXIT_OK


# Long running modes


async def run_app(ctx: AppContext, args: argparse.Namespace) -> int:
    """Run the REST API and dashboard until interrupted."""
    config = ctx.config
    dashboard = Dashboard(ctx, host=config.web_host, port=config.web_port)

    _LOGGER.info("Starting Z-Wave Lock Controller...")
    ctx.connection.start()
    await dashboard.start()
    _LOGGER.info(
        "App running. API: http://%s:%d",
        config.web_host,
        config.web_port,
    )

    await _wait_for_signal()

    _LOGGER.info("Shutting down...")
    await dashboard.stop()
    _LOGGER.info("Shutdown complete.")
    return EXIT_OK


async def cmd_interactive(ctx: AppContext, args: argparse.Namespace) -> int:
    from interactive import run_interactive

    await ctx.session()
    await run_interactive(ctx, build_parser(), execute)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="zwave-lock",
        description="Z-Wave Lock Controller",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", "-c", help="Path to config file", default=None)
    parser.add_argument("--url", help="Z-Wave JS server URL (ws://host:port)")
    parser.add_argument("--port", "-p", type=int, help="Override API port")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    parser.set_defaults(handler=run_app, codes=True)

    sub = parser.add_subparsers(dest="command", metavar="command")

    def add(name, handler, help_text, node=False, codes=False):
        p = sub.add_parser(name, help=help_text)
        p.set_defaults(handler=handler, codes=codes)
        if node:
            p.add_argument("node_id", type=int, help="Node ID")
        return p

    add("serve", run_app, "Run the REST API and dashboard (default)", codes=True)
    add("interactive", cmd_interactive, "Interactive shell", codes=True)
    add("list", cmd_list, "List nodes")
    add("scan", cmd_scan, "Controller info and node list")
    add("inspect", cmd_inspect, "Detailed node information", node=True)
    add("diagnostics", cmd_diagnostics, "Network diagnostics")
    add("test", cmd_test, "Test lock communication", node=True)
    add("status", cmd_status, "Lock status", node=True)
    add("lock", cmd_lock, "Lock the door", node=True)
    add("unlock", cmd_unlock, "Unlock the door", node=True)
    add("reinterview", cmd_reinterview, "Re-interview a node", node=True)

    p = add("wait-interview", cmd_wait_interview, "Wait for a node interview", node=True)
    p.add_argument("--timeout", type=float, default=None, help="Seconds to wait")

    p = sub.add_parser("listen", help="Print node events")
    p.add_argument("node_id", type=int, nargs="?", default=None, help="Node ID (all if omitted)")
    p.add_argument("--duration", type=float, default=None, help="Stop after seconds")
    p.set_defaults(handler=cmd_listen, codes=False)

    p = add("list-codes", cmd_list_codes, "Query occupied user code slots", node=True, codes=True)
    p.add_argument("--limit", type=int, default=None, help="Query at most this many slots")
    add("stored-codes", cmd_stored_codes, "List stored codes (labels only)", codes=True)
    p = add("show-code", cmd_show_code, "Decrypt one stored code", codes=True)
    p.add_argument("slot", type=int)

    p = add("set-code", cmd_set_code, "Set and verify a user code", node=True, codes=True)
    p.add_argument("slot", type=int, help="Slot (1-30)")
    p.add_argument("pin", nargs="?", default=None, help="PIN, prompted if omitted")
    p.add_argument("label", nargs="?", default="", help="Label for the code store")

    p = add("delete-code", cmd_delete_code, "Clear a user code", node=True, codes=True)
    p.add_argument("slot", type=int, help="Slot (1-30)")

    add("get-code-length", cmd_get_code_length, "Read the code length", node=True)
    p = add("set-code-length", cmd_set_code_length, "Set the code length (erases codes)", node=True)
    p.add_argument("length", type=int, help="Digits (4-8)")
    p.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")

    p = add("pair", cmd_pair, "Add a device (S2 by default)")
    p.add_argument("--strategy", choices=pairing.STRATEGIES, default="s2")
    add("pair-s0", cmd_pair, "Add a device with S0 security")
    add("exclude", cmd_exclude, "Remove a device from the network")
    add("remove-node", cmd_remove_node, "Remove a failed node", node=True)
    p = add("replace-node", cmd_replace_node, "Replace a failed node", node=True)
    p.add_argument("--strategy", choices=pairing.STRATEGIES, default="s2")

    p = add("config", cmd_config, "Show or change configuration")
    p.add_argument("--server-url", help="Set the Z-Wave JS server URL")
    p.add_argument("--clear-before-set", type=int, metavar="NODE",
                   help="Clear slots before setting codes on NODE")
    p.add_argument("--no-clear-before-set", type=int, metavar="NODE",
                   help="Stop clearing slots before setting codes on NODE")
    add("keys", cmd_keys, "Show security keys for the Z-Wave JS server")
    return parser


async def execute(ctx: AppContext, args: argparse.Namespace) -> int:
    """Run one parsed command, printing errors instead of raising."""
    try:
        code = await args.handler(ctx, args)
    except ZWaveLockError as err:
        print(f"❌ Error: {err}", file=sys.stderr)
        return exit_code_for(err)
    return EXIT_OK if code is None else code


async def run_command(config: Config, args: argparse.Namespace, connector=None) -> int:
    """Create a context, run one command and shut the context down."""
    try:
        ctx = AppContext.create(config, connector=connector)
    except ConfigError as err:
        print(f"❌ Error: {err}", file=sys.stderr)
        return EXIT_CONFIG
    if ctx.generated_key and args.codes:
        print(
            f"⚠️  {CODE_ENCRYPTION_KEY_ENV} is not set. Generated a key for this run:\n"
            f"   export {CODE_ENCRYPTION_KEY_ENV}={ctx.generated_key}\n"
            "   Codes stored without saving this key can never be decrypted.",
            file=sys.stderr,
        )
    try:
        return await execute(ctx, args)
    finally:
        await ctx.shutdown()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = Config.load(args.config)
        # Keys are saved before overrides so the file keeps its own settings
        generated = config.ensure_security_keys()
        config.apply_env()
        if args.url:
            config.server_url = args.url
        if args.port:
            config.web_port = args.port
    except ConfigError as err:
        print(f"❌ Error: {err}", file=sys.stderr)
        return EXIT_CONFIG
    if generated:
        print("\n🔐 Generated new Z-Wave security keys:\n", file=sys.stderr)
        for name in generated:
            print(f"   {name}: {getattr(config.security_keys, name)}", file=sys.stderr)
        print(
            f"\n⚠️  Saved to {config.config_file}. BACK THEM UP: without them\n"
            "   every securely paired device has to be paired again.\n",
            file=sys.stderr,
        )

    return asyncio.run(run_command(config, args))


if __name__ == "__main__":
    sys.exit(main())
