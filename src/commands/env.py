"""
Environment and database guard commands.

    validate-env     Validate env variables (or an env file) against a rule set
    guard-db         Block Prisma commands that would cross environments
"""

import argparse
import logging
from pathlib import Path

from src.commands.dependencies import CommandContext
from src.commands.output import banner, print_report
from src.core.env.files import read_env_file
from src.core.env.rules import (
    APPLICATION_RULES,
    development_rules,
    validate_environment,
    validate_paystack_key_consistency,
)
from src.core.models import Report
from src.core.safety import block_local_production, check_before_prisma, runtime_environment

logger = logging.getLogger(__name__)


def register(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser("validate-env", help="Validate environment variables")
    parser.add_argument("--file", type=Path, help="Validate this env file instead of the process environment")
    parser.add_argument(
        "--profile",
        choices=("app", "development"),
        default="app",
        help="Rule set: 'app' (boot requirements) or 'development' (.env.development isolation)",
    )
    parser.set_defaults(handler=validate_env)

    parser = subparsers.add_parser("guard-db", help="Database safety gate run before Prisma commands")
    parser.set_defaults(handler=guard_db)


def validate_env(ctx: CommandContext, args: argparse.Namespace) -> int:
    if args.file:
        path = args.file if args.file.is_absolute() else ctx.root / args.file
        if not path.is_file():
            print(f"❌ Env file not found: {path}")
            return 1
        env = read_env_file(path)
        source = str(path)
    else:
        env = ctx.env
        source = "process environment"

    is_production = runtime_environment(env) == "production"
    if args.profile == "development":
        rules = development_rules(
            production_indicators=[ctx.settings.production_project_ref],
            production_urls=ctx.settings.production_app_domains_list,
        )
    else:
        rules = APPLICATION_RULES

    print(f"🔍 Validating {source} ({args.profile} rules, {'production' if is_production else 'non-production'})")

    report = validate_environment(env, rules, is_production, title=f"Environment variables ({args.profile})")
    report.extend(validate_paystack_key_consistency(env, is_production))
    return print_report(report)


def _print_blocked(report: Report) -> None:
    banner("🚨 CRITICAL SECURITY ERROR: database command blocked")
    for result in report.errors:
        print(result.format())
    print("=" * 80 + "\n")


def guard_db(ctx: CommandContext, args: argparse.Namespace) -> int:
    """
    Exit 1 when the current environment must not run database commands.

    Run it in front of prisma generate/migrate/db push.
    """
    if runtime_environment(ctx.env) == "production":
        local = block_local_production(ctx.env)
        if not local.ok:
            _print_blocked(local)
            return 1

    report = check_before_prisma(ctx.env, ctx.classifier)
    if not report.ok:
        _print_blocked(report)
        return 1

    for warning in report.warnings:
        print(warning.format())
    print("✅ Database environment validated")
    return 0
