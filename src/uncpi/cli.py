"""
CLI entry point for the uncpi transpiler core.

Usage:
    uncpi analyze program.json
    uncpi transpile program.json --no-logs -o target.json
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .analysis import ModelLoader, RelationshipAnalyzer
from .config import TransformConfig
from .errors import UncpiError
from .transform import TransformationEngine

console = Console()


def setup_logging(verbose: int):
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def run_analyze(args: argparse.Namespace) -> int:
    """Load a model and print the facts derived from it."""
    console.print()
    console.print(Panel(
        f"[bold cyan]Relationship Analysis[/bold cyan]\n\n"
        f"[dim]Model: {escape(args.model)}[/dim]",
        title="[bold]uncpi[/bold]",
    ))
    console.print()

    try:
        program = ModelLoader().load(args.model)
    except (UncpiError, OSError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    facts = RelationshipAnalyzer().analyze(program)

    console.print("[bold]Program Information[/bold]")
    console.print(f"  Name: {program.name}")
    console.print(f"  Program ID: {program.program_id or 'Not specified'}")
    console.print(f"  Instructions: {len(program.instructions)}")
    console.print()

    table = Table(title="Program-Derived Accounts")
    table.add_column("Account", style="cyan")
    table.add_column("Struct", style="dim")
    table.add_column("Seeds")
    table.add_column("Bump", style="yellow")
    for pda in facts.pdas:
        table.add_row(pda.account_name, pda.group or "-", escape(", ".join(pda.seeds)), escape(pda.bump_source or "canonical"))
    console.print(table)
    console.print()

    table = Table(title="Cross-Program Calls")
    table.add_column("Instruction", style="cyan")
    table.add_column("Program")
    table.add_column("Operation", style="yellow")
    table.add_column("Roles", style="dim")
    for call in facts.cpi_calls:
        table.add_row(call.instruction, call.target_program, call.operation, ", ".join(call.account_roles))
    console.print(table)
    console.print()

    table = Table(title="Account Sizes")
    table.add_column("Record", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Assumptions", style="dim")
    for size in facts.account_sizes:
        table.add_row(size.record_name, str(size.size), escape("; ".join(size.assumptions)) or "-")
    console.print(table)

    if args.output:
        output_data = {
            "program": program.name,
            "pdas": [
                {"account": p.account_name, "group": p.group, "seeds": list(p.seeds), "bump": p.bump_source}
                for p in facts.pdas
            ],
            "cpi_calls": [
                {
                    "instruction": c.instruction,
                    "program": c.target_program,
                    "address": c.program_address,
                    "operation": c.operation,
                    "roles": list(c.account_roles),
                }
                for c in facts.cpi_calls
            ],
            "sizes": {s.record_name: s.size for s in facts.account_sizes},
        }
        with open(args.output, "w") as f:
            json.dump(output_data, f, indent=2)
        console.print(f"\n[dim]Analysis exported to: {args.output}[/dim]")

    return 0


def run_transpile(args: argparse.Namespace) -> int:
    """Load a model, transform it and report the result."""
    config = TransformConfig(
        no_alloc=args.no_alloc,
        lazy_entrypoint=args.lazy_entrypoint,
        inline_cpi=args.inline_cpi,
        anchor_compat=not args.no_anchor_compat,
        no_logs=args.no_logs,
        unsafe_math=args.unsafe_math,
        max_workers=args.workers,
    )

    console.print()
    console.print(Panel(
        f"[bold cyan]Anchor to Pinocchio[/bold cyan]\n\n"
        f"[dim]Model: {escape(args.model)}[/dim]\n"
        f"[dim]Options: {', '.join(k for k, v in config.to_dict().items() if v is True) or 'none'}[/dim]",
        title="[bold]uncpi[/bold]",
    ))
    console.print()

    try:
        program = ModelLoader().load(args.model)
        facts = RelationshipAnalyzer().analyze(program)
        target = TransformationEngine(config).transform(program, facts)
    except (UncpiError, OSError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    table = Table(title=f"Instructions ({target.name})")
    table.add_column("Name", style="cyan")
    table.add_column("Discriminator", style="dim")
    table.add_column("Accounts", justify="right")
    table.add_column("Checks", justify="right")
    table.add_column("Status", style="yellow")
    for ix in target.instructions:
        if ix.failed:
            status = "[red]failed[/red]"
        elif ix.issues:
            status = f"{len(ix.issues)} unresolved"
        else:
            status = "[green]ok[/green]"
        table.add_row(ix.name, ix.discriminator.hex(), str(len(ix.accounts)), str(len(ix.validations)), status)
    console.print(table)

    if target.records:
        console.print()
        table = Table(title="Records")
        table.add_column("Name", style="cyan")
        table.add_column("Size", justify="right")
        table.add_column("Fields", style="dim")
        for record in target.records:
            table.add_row(record.name, str(record.size), ", ".join(f.name for f in record.fields))
        console.print(table)

    issues = target.issues()
    if issues:
        console.print()
        console.print("[bold]Unresolved Patterns[/bold]")
        for instruction, issue in issues:
            console.print(f"  [yellow]● {instruction}[/yellow] {escape(str(issue))}")

    if args.show_body:
        for ix in target.instructions:
            console.print()
            console.print(Panel(Text(ix.body or "(empty)"), title=ix.name))

    if args.output:
        with open(args.output, "w") as f:
            json.dump(target.to_dict(), f, indent=2)
        console.print(f"\n[dim]Target model exported to: {args.output}[/dim]")

    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="uncpi",
        description="Transform Anchor program models into Pinocchio form",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="count",
        default=0,
        help="Increase log verbosity (-v info, -vv debug)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # analyze command
    analyze_parser = subparsers.add_parser("analyze", help="Show PDAs, CPI calls and record sizes")
    analyze_parser.add_argument("model", type=str, help="Path to the program model JSON file")
    analyze_parser.add_argument(
        "--output", "-o",
        type=str,
        help="Export facts to JSON file"
    )

    # transpile command
    transpile_parser = subparsers.add_parser("transpile", help="Transform a program model")
    transpile_parser.add_argument("model", type=str, help="Path to the program model JSON file")
    transpile_parser.add_argument(
        "--output", "-o",
        type=str,
        help="Export the target model to JSON file"
    )
    transpile_parser.add_argument("--no-alloc", action="store_true", help="Forbid heap allocation in bodies")
    transpile_parser.add_argument("--lazy-entrypoint", action="store_true", help="Use the lazy entrypoint")
    transpile_parser.add_argument("--inline-cpi", action="store_true", help="Inline lamport transfers")
    transpile_parser.add_argument(
        "--no-anchor-compat",
        action="store_true",
        help="Use placeholder discriminators instead of Anchor's"
    )
    transpile_parser.add_argument("--no-logs", action="store_true", help="Strip msg! and emit! calls")
    transpile_parser.add_argument("--unsafe-math", action="store_true", help="Accepted; has no effect")
    transpile_parser.add_argument(
        "--workers", "-j",
        type=int,
        default=None,
        help="Worker threads (default: 75%% of CPUs)"
    )
    transpile_parser.add_argument("--show-body", action="store_true", help="Print rewritten bodies")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    if args.command == "analyze":
        return run_analyze(args)
    elif args.command == "transpile":
        return run_transpile(args)
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
