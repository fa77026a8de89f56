"""Command-line entry points for the PrintFlow toolkit.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into calls on the business layer, and printing the
results. Keeping the CLI thin means the same parser configuration can be
reused by tests, scripts, or any other front-end.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import analytics, core_logic, log
from .constants import JobType, Priority, UserRole
from .data_manager import Job
from .exceptions import BusinessRuleViolation, RestoreError, StaleSnapshotError
from .workflow import JobDraft


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="printflow-cli",
        description="Command-line tools for the PrintFlow job tracker.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to the nearest config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def _simple_spec(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
    configure: Optional[Callable[[argparse.ArgumentParser], None]] = None,
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        if configure is not None:
            configure(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as job intake and restores."""
    specs = {
        "new-job": register_new_job_command(subparsers),
        "advance": register_advance_command(subparsers),
        "delete-job": register_delete_job_command(subparsers),
        "add-user": register_add_user_command(subparsers),
        "set-user-active": register_set_user_active_command(subparsers),
        "remove-user": register_remove_user_command(subparsers),
        "export": register_export_command(subparsers),
        "restore": register_restore_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as listings and reports."""
    specs = {
        "jobs": register_jobs_command(subparsers),
        "customers": register_customers_command(subparsers),
        "users": register_users_command(subparsers),
        "login": register_login_command(subparsers),
        "dashboard": register_dashboard_command(subparsers),
        "report": register_report_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_new_job_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``new-job``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--customer-name", required=True)
        parser.add_argument("--customer-contact", default="")
        parser.add_argument("--customer-email", default="")
        parser.add_argument("--description", required=True)
        parser.add_argument("--type", dest="job_type", choices=[member.value for member in JobType], required=True)
        parser.add_argument("--priority", choices=[member.value for member in Priority], default=Priority.NORMAL.value)
        parser.add_argument("--assigned-to", default="")
        parser.add_argument("--price", type=int, default=0)

    return _simple_spec("new-job", "Register a new job at the counter.", run_new_job, configure)


def register_advance_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``advance``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--job-id", required=True)

    return _simple_spec("advance", "Move a job to its next stage.", run_advance, configure)


def register_delete_job_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-job``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--job-id", required=True)
        parser.add_argument("--yes", action="store_true", help="Confirm the permanent deletion.")

    return _simple_spec("delete-job", "Permanently delete a job.", run_delete_job, configure)


def register_add_user_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-user``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--username", required=True)
        parser.add_argument("--password", required=True)
        parser.add_argument("--name", default="")
        parser.add_argument("--role", choices=[member.value for member in UserRole], required=True)
        parser.add_argument("--inactive", action="store_true", help="Create the account disabled.")

    return _simple_spec("add-user", "Create a shop account.", run_add_user, configure)


def register_set_user_active_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set-user-active``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--user-id", required=True)
        parser.add_argument("--inactive", action="store_true", help="Disable instead of enable.")

    return _simple_spec("set-user-active", "Enable or disable an account.", run_set_user_active, configure)


def register_remove_user_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``remove-user``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--user-id", required=True)

    return _simple_spec("remove-user", "Delete an account.", run_remove_user, configure)


def register_export_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--output-dir", type=Path, default=None)

    return _simple_spec("export", "Write a dated backup workbook.", run_export, configure)


def register_restore_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``restore``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--backup", type=Path, required=True)
        parser.add_argument("--yes", action="store_true", help="Confirm replacing all live data.")

    return _simple_spec("restore", "Replace all data with a backup workbook.", run_restore, configure)


def register_jobs_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``jobs``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--active", action="store_true", help="Hide completed jobs.")

    return _simple_spec("jobs", "List jobs and their stages.", run_jobs_report, configure)


def register_customers_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``customers``."""
    return _simple_spec("customers", "List customers.", run_customers_report)


def register_users_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``users``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--all", dest="include_inactive", action="store_true", help="Include disabled accounts.")

    return _simple_spec("users", "List shop accounts.", run_users_report, configure)


def register_login_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``login``."""

    def configure(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--username", required=True)
        parser.add_argument("--password", required=True)

    return _simple_spec("login", "Check a username and password.", run_login, configure)


def register_dashboard_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``dashboard``."""
    return _simple_spec("dashboard", "Display revenue, TAT, cash and workload metrics.", run_dashboard_report)


def register_report_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``report``."""
    return _simple_spec("report", "Request an AI shop status report.", run_ai_report)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = core_logic.load_runtime_context(config_path)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_new_job(args: argparse.Namespace) -> JobDraft:
    """Translate CLI args into a job draft."""
    return JobDraft(
        customer_name=args.customer_name,
        customer_contact=args.customer_contact,
        customer_email=args.customer_email,
        description=args.description,
        type=JobType(args.job_type),
        priority=Priority(args.priority),
        assigned_to=args.assigned_to,
        price=args.price,
    )


def translate_add_user(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-user request."""
    return {
        "username": args.username,
        "password": args.password,
        "name": args.name,
        "role": UserRole(args.role),
        "is_active": not getattr(args, "inactive", False),
    }


def format_timestamp(timestamp_ms: Optional[int]) -> str:
    if timestamp_ms is None:
        return "-"
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%Y-%m-%d %H:%M")


def format_job(job: Job) -> str:
    return (
        f"{job.id}  {job.current_stage.value:<10}  {job.priority.value:<6}  "
        f"{job.type.value:<11}  {job.price:>8}  {job.customer_name}  "
        f"[{job.assigned_to or 'unassigned'}]"
    )


def _require_confirmation(args: argparse.Namespace, action: str) -> bool:
    if getattr(args, "yes", False):
        return True
    log.warning("Refusing to %s without --yes", action)
    print(f"This will {action}. Re-run with --yes to confirm.")
    return False


def run_new_job(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the job intake workflow in the BLL."""
    job = core_logic.register_job(context, translate_new_job(args))
    print(f"Created {job.id} at {job.current_stage.value}")
    return 0


def run_advance(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the stage advance workflow in the BLL."""
    job = core_logic.advance_job(context, args.job_id)
    print(f"{job.id} moved to {job.current_stage.value}")
    return 0


def run_delete_job(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    if not _require_confirmation(args, f"permanently delete job {args.job_id}"):
        return 1
    removed = core_logic.delete_job(context, args.job_id)
    print(f"Deleted {args.job_id}" if removed else f"No job {args.job_id}; nothing deleted")
    return 0


def run_add_user(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    user = core_logic.add_user(context, **translate_add_user(args))
    print(f"Created user {user.username} ({user.id})")
    return 0


def run_set_user_active(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    user = core_logic.set_user_active(context, args.user_id, not args.inactive)
    print(f"{user.username} is {'active' if user.is_active else 'inactive'}")
    return 0


def run_remove_user(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.remove_user(context, args.user_id)
    print(f"Removed user {args.user_id}")
    return 0


def run_export(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    destination = core_logic.export_database(context, directory_path=args.output_dir)
    print(f"Backup written to {destination}")
    return 0


def run_restore(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    if not _require_confirmation(args, "replace all jobs, customers and users"):
        return 1
    restored = core_logic.restore_from_file(context, args.backup)
    print(
        f"Restored {len(restored.jobs)} jobs, {len(restored.customers)} customers, "
        f"{len(restored.users)} users"
    )
    return 0


def run_jobs_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for job in core_logic.list_jobs(context, include_completed=not args.active):
        print(format_job(job))
    return 0


def run_customers_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for customer in core_logic.list_customers(context):
        print(
            f"{customer.id}  {customer.name}  {customer.phone or '-'}  {customer.email or '-'}  "
            f"visits={customer.total_visits}  last={format_timestamp(customer.last_visit)}"
        )
    return 0


def run_users_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for user in core_logic.list_users(context, include_inactive=args.include_inactive):
        status = "active" if user.is_active else "inactive"
        print(f"{user.id}  {user.username}  {user.name}  {user.role.value}  {status}")
    return 0


def run_login(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    user = core_logic.login(context, args.username, args.password)
    if user is None:
        print("Invalid credentials or inactive account")
        return 2
    print(f"Welcome, {user.name} ({user.role.value})")
    return 0


def render_dashboard(snapshot: analytics.DashboardSnapshot) -> str:
    lines = [
        f"Active jobs: {snapshot.active_jobs}",
        f"Completed today: {snapshot.completed_today}",
        f"Realized revenue: {snapshot.revenue.realized}",
        f"Pending revenue: {snapshot.revenue.pending}",
        "",
        "Jobs per stage:",
    ]
    lines += [f"  {stage.value:<10} {count}" for stage, count in snapshot.stage_counts.items()]
    lines += ["", "Average time in stage:"]
    lines += [
        f"  {row.stage.value:<10} {row.avg_time_minutes} min ({row.avg_time_days} days)"
        for row in snapshot.stage_tat
    ]
    lines += ["", "Daily cash:"]
    lines += [f"  {row.date.isoformat()}  {row.amount:>8}  ({row.count} jobs)" for row in snapshot.daily_cash]
    lines += ["", "Workload:"]
    lines += [
        f"  {row.name or 'unassigned':<16} active={row.active} completed={row.completed} total={row.total}"
        for row in snapshot.workload
    ]
    return "\n".join(lines)


def run_dashboard_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    print(render_dashboard(core_logic.build_dashboard(context)))
    return 0


def run_ai_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    print(core_logic.generate_shop_report(context))
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, RestoreError):
        log.error("%s", error)
        return 4
    if isinstance(error, StaleSnapshotError):
        log.error("%s; reload and try again", error)
        return 5
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
