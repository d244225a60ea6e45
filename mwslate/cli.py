#!/usr/bin/env python3
"""
mwslate CLI

Offline tooling around slates: inspect, verify and convert slate files,
compute fees, convert amounts and manage configuration.

Usage:
    mwslate <command> [subcommand] [options]

Commands:
    slate       Inspect, verify or convert a slate document
    fee         Minimum fee for a transaction shape
    amount      Convert between coins and nanocoins
    config      Configuration management
    rpc         Request surface description

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

from mwslate import __version__
from mwslate.errors import WalletError


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"
    TABLE = "table"
    TEXT = "text"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format data for output."""
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, default=str)
    elif fmt == OutputFormat.YAML:
        import yaml
        return yaml.dump(data, default_flow_style=False)
    elif fmt == OutputFormat.TABLE:
        return _format_table(data)
    else:
        return str(data)


def _format_table(data: Any) -> str:
    """Format data as ASCII table."""
    if isinstance(data, list) and data and isinstance(data[0], dict):
        headers = list(data[0].keys())
        rows = [[str(row.get(h, ""))[:40] for h in headers] for row in data]
        widths = [max(len(h), max(len(r[i]) for r in rows)) for i, h in enumerate(headers)]

        lines = []
        lines.append(" | ".join(h.ljust(widths[i]) for i, h in enumerate(headers)))
        lines.append("-+-".join("-" * w for w in widths))
        for row in rows:
            lines.append(" | ".join(c.ljust(widths[i]) for i, c in enumerate(row)))
        return "\n".join(lines)
    elif isinstance(data, dict):
        return "\n".join(f"{k}: {v}" for k, v in data.items())
    return str(data)


def _read_json(path: str) -> Any:
    try:
        text = sys.stdin.read() if path == "-" else Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise CLIError(f"Cannot read {path}: {e}") from e
    try:
        return json.loads(text)
    except ValueError as e:
        raise CLIError(f"{path} is not valid JSON: {e}") from e


class SlateCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="mwslate",
            description="Mimblewimble slate negotiation tooling",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"mwslate {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=["json", "yaml", "table", "text"],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress non-essential output",
        )
        self.parser.add_argument(
            "--config", "-c",
            help="Configuration file (YAML)",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        self._register_slate_commands()
        self._register_fee_commands()
        self._register_amount_commands()
        self._register_config_commands()
        self._register_rpc_commands()

    def _register_slate_commands(self) -> None:
        slate = self.subparsers.add_parser("slate", help="Slate documents")
        slate_sub = slate.add_subparsers(dest="subcommand")

        show = slate_sub.add_parser("show", help="Summarize a slate")
        show.add_argument("file", help="Slate JSON file ('-' for stdin)")

        verify = slate_sub.add_parser("verify", help="Check schema, messages and, when complete, the transaction")
        verify.add_argument("file", help="Slate JSON file ('-' for stdin)")

        convert = slate_sub.add_parser("convert", help="Re-encode a slate at another version")
        convert.add_argument("file", help="Slate JSON file ('-' for stdin)")
        convert.add_argument("--target", "-t", dest="target_version", type=int, required=True,
                             choices=[1, 2, 3], help="Target slate version")
        convert.add_argument("--output", "-o", help="Write to file instead of stdout")

    def _register_fee_commands(self) -> None:
        fee = self.subparsers.add_parser("fee", help="Minimum fee for a transaction shape")
        fee.add_argument("--inputs", "-i", type=int, required=True, help="Number of inputs")
        fee.add_argument("--outputs", "-o", type=int, required=True, help="Number of outputs")
        fee.add_argument("--kernels", "-k", type=int, default=1, help="Number of kernels")
        fee.add_argument("--base-fee", type=int, help="Base fee (default: configured)")

    def _register_amount_commands(self) -> None:
        amount = self.subparsers.add_parser("amount", help="Convert between coins and nanocoins")
        amount.add_argument("value", help="Amount, e.g. 6.0 or 6000000000")
        amount.add_argument("--to-coins", action="store_true", help="Treat value as nanocoins")

    def _register_config_commands(self) -> None:
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")

        config_sub.add_parser("show", help="Show current configuration")

        get_cmd = config_sub.add_parser("get", help="Get a configuration value")
        get_cmd.add_argument("path", help="Dotted path, e.g. selection.max_outputs")

        config_sub.add_parser("validate", help="Validate configuration")

        config_sub.add_parser("schema", help="Export configuration schema")

    def _register_rpc_commands(self) -> None:
        rpc = self.subparsers.add_parser("rpc", help="Request surface")
        rpc_sub = rpc.add_subparsers(dest="subcommand")

        methods = rpc_sub.add_parser("methods", help="List RPC methods")
        methods.add_argument("--api", choices=["owner", "foreign"], default="owner")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        try:
            from mwslate.config import get_config_manager
            from mwslate.observability import configure_logging

            mgr = get_config_manager()
            if parsed.config:
                mgr.load_from_file(parsed.config)
            else:
                mgr.load_defaults()
            obs = mgr.config.observability
            configure_logging(obs.log_level.get(), obs.log_format.get())
            fmt = OutputFormat(parsed.format)
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            return 0

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except WalletError as e:
            if not parsed.quiet:
                print(f"Error: {e.kind}: {e.message}", file=sys.stderr)
            return 2

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {cmd} {subcmd or ''}")

        return handler(args)

    # Slate handlers
    def _handle_slate_show(self, args: argparse.Namespace) -> Any:
        from mwslate.hardening import amount_to_hr_string
        from mwslate.versions import parse_slate_versioned

        slate, version = parse_slate_versioned(_read_json(args.file))
        return {
            "id": slate.id,
            "version": version,
            "amount": amount_to_hr_string(slate.amount),
            "fee": amount_to_hr_string(slate.fee),
            "height": slate.height,
            "lock_height": slate.lock_height,
            "ttl_cutoff_height": slate.ttl_cutoff_height,
            "num_participants": slate.num_participants,
            "participants": slate.participant_ids(),
            "signed": [pd.id for pd in slate.participant_data if pd.is_complete],
            "inputs": len(slate.tx.body.inputs),
            "outputs": len(slate.tx.body.outputs),
            "kernel_complete": slate.tx.kernel.is_complete,
        }

    def _handle_slate_verify(self, args: argparse.Namespace) -> Any:
        from mwslate.config import get_config
        from mwslate.versions import parse_slate_versioned

        slate, version = parse_slate_versioned(_read_json(args.file))
        invalid = slate.invalid_message_ids()
        problems: List[str] = []
        if slate.tx.kernel.is_complete:
            problems = slate.tx.validate(get_config().chain.base_fee.get())
        valid = not invalid and not problems
        if not valid:
            print(format_output({"valid": False, "invalid_messages": invalid, "problems": problems}),
                  file=sys.stderr)
            raise CLIError(f"Slate {slate.id} failed verification", exit_code=3)
        return {"valid": True, "id": slate.id, "version": version, "finalized": slate.tx.kernel.is_complete}

    def _handle_slate_convert(self, args: argparse.Namespace) -> Any:
        from mwslate.versions import convert_slate

        converted = convert_slate(_read_json(args.file), args.target_version)
        if args.output:
            Path(args.output).write_text(json.dumps(converted, indent=2) + "\n", encoding="utf-8")
            return {"output": args.output, "version": args.target_version}
        return converted

    # Fee and amount handlers
    def _handle_fee(self, args: argparse.Namespace) -> Any:
        from mwslate.config import get_config
        from mwslate.hardening import amount_to_hr_string
        from mwslate.transaction import tx_fee

        base_fee = args.base_fee or get_config().chain.base_fee.get()
        fee = tx_fee(args.inputs, args.outputs, args.kernels, base_fee)
        return {"fee": str(fee), "fee_coins": amount_to_hr_string(fee), "base_fee": str(base_fee)}

    def _handle_amount(self, args: argparse.Namespace) -> Any:
        from mwslate.hardening import amount_from_hr_string, amount_to_hr_string

        if args.to_coins:
            try:
                nanos = int(args.value)
            except ValueError as e:
                raise CLIError(f"Not an integer amount: {args.value}") from e
            return {"nanocoins": str(nanos), "coins": amount_to_hr_string(nanos)}
        try:
            nanos = amount_from_hr_string(args.value)
        except ValueError as e:
            raise CLIError(str(e)) from e
        return {"coins": args.value, "nanocoins": str(nanos)}

    # Config handlers
    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        from mwslate.config import get_config_manager
        mgr = get_config_manager()
        return mgr.config.to_dict()

    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        from mwslate.config import get_config_manager
        mgr = get_config_manager()
        return {"path": args.path, "value": mgr.get(args.path)}

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        from mwslate.config import get_config_manager
        mgr = get_config_manager()
        errors = mgr.validate()
        return {"valid": len(errors) == 0, "errors": errors}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        from mwslate.config import get_config_manager
        mgr = get_config_manager()
        return mgr.export_schema()

    # RPC handlers
    def _handle_rpc_methods(self, args: argparse.Namespace) -> Any:
        from mwslate.rpc import FOREIGN_METHODS, OWNER_METHODS, method_docs
        return method_docs(OWNER_METHODS if args.api == "owner" else FOREIGN_METHODS)


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    cli = SlateCLI()
    return cli.run(argv)


if __name__ == "__main__":
    sys.exit(main())
