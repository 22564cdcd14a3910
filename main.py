#!/usr/bin/env python3
"""
Trade Lifecycle Kernel - Operator CLI

USAGE:
    python main.py edges
    python main.py history T-1001 --limit 20 --config config/config.yaml
    python main.py verify --config config/config.yaml
    python main.py republish --config config/config.yaml
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from tradekernel.config import ConfigLoader
from tradekernel.exceptions import KernelError
from tradekernel.kernel import TradeKernel
from tradekernel.logging import setup_logging
from tradekernel.state import ALL_EDGES


def _add_config_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--config',
        type=str,
        default='config/config.yaml',
        help='Path to config file (default: config/config.yaml)'
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Trade Lifecycle Kernel - operator tools",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    subparsers = parser.add_subparsers(dest='command', help='Command')
    subparsers.required = True

    subparsers.add_parser('edges', help='Print the transition table')

    history_parser = subparsers.add_parser('history', help='Show recent audit records')
    history_parser.add_argument('key', help='Trade id or company id')
    history_parser.add_argument('--limit', type=int, default=None, help='Max records')
    history_parser.add_argument('--json', action='store_true', help='Emit JSON lines')
    _add_config_arg(history_parser)

    verify_parser = subparsers.add_parser('verify', help='Verify the audit hash chain')
    _add_config_arg(verify_parser)

    republish_parser = subparsers.add_parser('republish', help='Redeliver pending outbox events')
    _add_config_arg(republish_parser)

    return parser


def _print_edges() -> None:
    print(f"{'FROM':<18} {'TO':<18} {'INITIATOR':<11} {'GUARD':<18} REQUIRED ACTIONS")
    print("-" * 90)
    for edge in ALL_EDGES:
        guard = edge.guard.__name__ if edge.guard else "-"
        actions = ", ".join(edge.required_actions) or "-"
        print(
            f"{edge.from_state.value:<18} {edge.to_state.value:<18} "
            f"{edge.initiator.value:<11} {guard:<18} {actions}"
        )


def _load_kernel(config_arg: str) -> TradeKernel:
    config_path = Path(config_arg)
    config = ConfigLoader(config_dir=config_path.parent).load_and_validate()
    setup_logging(config.logging)
    return TradeKernel.from_config(config)


def _run(args: argparse.Namespace) -> int:
    if args.command == 'edges':
        _print_edges()
        return 0

    with _load_kernel(args.config) as kernel:
        if args.command == 'history':
            for record in kernel.read_recent(args.key, args.limit):
                if args.json:
                    print(json.dumps(record.to_dict(), sort_keys=True))
                    continue
                actions = ",".join(record.required_actions) or "-"
                print(
                    f"#{record.sequence:<6} {record.timestamp.isoformat()} {record.trade_id:<12} "
                    f"{record.decision.value:<8} {record.reason_code.value:<28} {actions}"
                )
            return 0

        if args.command == 'verify':
            count = kernel.verify_audit_chain()
            print(f"Audit chain OK ({count} records)")
            return 0

        if args.command == 'republish':
            count = kernel.republish_pending()
            print(f"Republished {count} pending events")
            return 0

    return 2


def main(argv: list[str] | None = None) -> int:
    """Main CLI entrypoint."""
    args = _build_parser().parse_args(argv)
    try:
        return _run(args)
    except (KernelError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
