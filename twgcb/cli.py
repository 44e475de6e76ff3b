"""twgcb CLI: check and apply the TWGCB RHEL 8.5 baseline on this host."""

from __future__ import annotations

import logging
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from twgcb import __version__
from twgcb._config import Settings, Theme, parse_var_overrides
from twgcb._loading import load_rules
from twgcb.engine import EXIT_CANCELED, EXIT_INVALID, EXIT_OK, Engine, Mode
from twgcb.errors import InvalidInput
from twgcb.local import LocalSession
from twgcb.output import RunResult, parse_output_spec, write_output
from twgcb.prompt import ConsolePrompter
from twgcb.report import Reporter

logger = logging.getLogger("twgcb")


# ── Shared options ──────────────────────────────────────────────────────────


def rule_options(f):
    """Rule selection options for check/apply/list."""
    f = click.option(
        "--rules",
        "-r",
        default=None,
        help="Alternate rule catalog directory or file",
    )(f)
    f = click.option("--severity", "-s", multiple=True, help="Filter by severity (repeatable)")(f)
    f = click.option("--category", "-c", multiple=True, help="Filter by category (repeatable)")(f)
    f = click.option(
        "--var",
        "-V",
        "var",
        multiple=True,
        metavar="KEY=VALUE",
        help="Override rule variable (e.g., -V pass_min_days=7)",
    )(f)
    return f


def run_options(f):
    """Options shared by check and apply."""
    f = click.option(
        "--output",
        "-o",
        "outputs",
        multiple=True,
        help="Output format (csv, json). Add :path to write to file (e.g., -o json:results.json)",
    )(f)
    f = click.option("--quiet", "-q", is_flag=True, help="Only print the summary (useful with -o)")(f)
    f = click.option("--verbose", "-v", is_flag=True, help="Log commands, state transitions and backups")(f)
    f = click.option("--no-color", is_flag=True, help="Disable colored output")(f)
    f = click.option(
        "--root",
        default="/",
        help="Evaluate file paths under this directory (commands still run on the host)",
    )(f)
    return f


# ── CLI group ───────────────────────────────────────────────────────────────

MAIN_HELP_EPILOG = """
\b
Exit codes:
  0  every selected rule is compliant (or fixed, pending reboot)
  1  a rule is non-compliant, indeterminate, skipped, or failed to apply
  2  canceled at the prompt
  3  invalid input or environment

\b
Examples:
  twgcb check
  twgcb check TWGCB-01-008-0225 TWGCB-01-008-0226
  twgcb apply --category accounts
  twgcb apply --yes -V pass_max_days=60
  twgcb check -o json:report.json -q
"""


class BaselineGroup(click.Group):
    """Click group reporting usage errors with exit code 3; 2 means canceled."""

    def main(self, *args, **kwargs):
        kwargs["standalone_mode"] = False
        try:
            rv = super().main(*args, **kwargs)
        except click.UsageError as e:
            e.show()
            sys.exit(EXIT_INVALID)
        except click.ClickException as e:
            e.show()
            sys.exit(e.exit_code)
        except click.Abort:
            click.echo("Aborted!", err=True)
            sys.exit(EXIT_CANCELED)
        sys.exit(rv if isinstance(rv, int) else EXIT_OK)


@click.group(cls=BaselineGroup, epilog=MAIN_HELP_EPILOG, context_settings={"max_content_width": 120})
@click.version_option(version=__version__, prog_name="twgcb")
def main():
    """TWGCB RHEL 8.5 hardening: check compliance and apply fixes."""
    pass


def _setup_logging(verbose: bool, console: Console) -> None:
    for h in logger.handlers[:]:
        logger.removeHandler(h)
    logger.addHandler(RichHandler(console=console, show_path=False, rich_tracebacks=verbose))
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.propagate = False


def _fail(err: Console, message: str) -> None:
    err.print(f"[red]Error:[/red] {escape(message)}", highlight=False)
    sys.exit(EXIT_INVALID)


def _write_outputs(run_result: RunResult, outputs: tuple[str, ...], err: Console) -> None:
    """Write formatted outputs based on --output flags."""
    for spec in outputs:
        fmt, filepath = parse_output_spec(spec)
        try:
            output = write_output(run_result, fmt, filepath)
        except OSError as exc:
            _fail(err, f"cannot write {filepath}: {exc.strerror}")
        if filepath:
            err.print(f"[dim]Wrote {fmt} output to {filepath}[/dim]")
        else:
            print(output)


def _execute(command: str, rule_ids: tuple[str, ...], opts: dict) -> None:
    apply = command == "apply"
    err = Console(stderr=True, no_color=opts["no_color"])
    _setup_logging(opts["verbose"], err)

    try:
        settings = Settings(
            root=opts["root"],
            theme=Theme.plain() if opts["no_color"] else Theme(),
            assume_yes=opts.get("yes", False),
            no_prompt=opts.get("no_prompt", False),
            backup_keep=opts.get("backup_keep"),
            quiet=opts["quiet"],
        )
        for spec in opts["outputs"]:
            fmt, _ = parse_output_spec(spec)
            if fmt not in ("json", "csv"):
                raise InvalidInput(f"Unknown output format: {fmt} (valid: json, csv)")
        registry = load_rules(opts["rules"], cli_overrides=parse_var_overrides(opts["var"]))
        selected = registry.select(rule_ids, category=opts["category"], severity=opts["severity"])
    except InvalidInput as exc:
        _fail(err, str(exc))

    if not selected:
        err.print("[yellow]No rules matched the given filters.[/yellow]")
        sys.exit(EXIT_OK)

    if apply and not LocalSession.is_root() and not opts["allow_non_root"]:
        _fail(err, "apply must run as root (use --allow-non-root to apply under a writable --root)")

    if settings.assume_yes:
        mode = Mode.ASSUME_YES
    elif settings.no_prompt:
        mode = Mode.NO_PROMPT
    else:
        mode = Mode.INTERACTIVE

    console = Console(no_color=opts["no_color"], highlight=False)
    reporter = Reporter(console, settings.theme, quiet=settings.quiet)
    session = LocalSession(root=settings.root)
    engine = Engine(
        session,
        mode=mode if apply else Mode.NO_PROMPT,
        prompter=ConsolePrompter(),
        observer=reporter,
        backup_keep=settings.backup_keep,
        is_tty=sys.stdin.isatty() if apply else False,
    )
    summary = engine.run(selected, apply=apply)
    reporter.summary(summary)

    run_result = RunResult(command=command, root=settings.root, results=summary.results, exit_code=summary.exit_code)
    _write_outputs(run_result, opts["outputs"], err)
    sys.exit(summary.exit_code)


# ── check ───────────────────────────────────────────────────────────────────


@main.command()
@rule_options
@run_options
@click.argument("rule_ids", nargs=-1)
def check(rule_ids, **opts):
    """Check rules without changing anything.

    Exits 0 when every selected rule is compliant, 1 otherwise.
    """
    _execute("check", rule_ids, opts)


# ── apply ───────────────────────────────────────────────────────────────────


@main.command()
@rule_options
@run_options
@click.option("--yes", "-y", is_flag=True, help="Apply every fix without prompting")
@click.option("--no-prompt", is_flag=True, help="Never prompt and never change anything")
@click.option(
    "--backup-keep",
    type=int,
    default=None,
    metavar="N",
    help="Keep only the N newest backups of each modified file",
)
@click.option("--allow-non-root", is_flag=True, help="Allow apply without root (for use with --root)")
@click.argument("rule_ids", nargs=-1)
def apply(rule_ids, **opts):
    """Check rules and, after confirmation, fix the non-compliant ones.

    Each non-compliant rule prompts [Y]es / [N]o / [C]ancel. Cancel stops
    the run immediately (exit 2). Modified files are backed up next to the
    original as <file>.bak.<UTC timestamp>.
    """
    _execute("apply", rule_ids, opts)


# ── list ────────────────────────────────────────────────────────────────────


@main.command("list")
@rule_options
def list_rules(rules, severity, category, var):
    """List the rules in the catalog."""
    err = Console(stderr=True)
    try:
        registry = load_rules(rules, cli_overrides=parse_var_overrides(var))
        selected = registry.select(category=category, severity=severity)
    except InvalidInput as exc:
        _fail(err, str(exc))

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", no_wrap=True)
    table.add_column("Severity")
    table.add_column("Category")
    table.add_column("Title")
    for rule in selected:
        table.add_row(rule.id, rule.severity, rule.category, rule.title)
    console = Console(highlight=False)
    console.print(table)
    console.print(f"{len(selected)} rule(s)")


if __name__ == "__main__":
    main()
