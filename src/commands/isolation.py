"""
verify-isolation: audit that local development cannot reach production.
"""

import argparse
from pathlib import Path

import src
from src.commands.dependencies import CommandContext
from src.commands.output import banner, print_report
from src.core.isolation import IsolationVerifier


def register(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser("verify-isolation", help="Verify production isolation of the working tree")
    parser.add_argument(
        "--no-spawn",
        action="store_true",
        help="Skip the checks that run guard-db in child processes",
    )
    parser.set_defaults(handler=verify_isolation)


def verify_isolation(ctx: CommandContext, args: argparse.Namespace) -> int:
    banner("🔒 PRODUCTION ISOLATION VERIFICATION")
    print(f"Project root: {ctx.root}")

    verifier = IsolationVerifier(
        root=ctx.root,
        classifier=ctx.classifier,
        production_project_ref=ctx.settings.production_project_ref,
        production_urls=ctx.settings.production_app_domains_list,
        exclude=[Path(src.__file__).parent],
    )
    report = verifier.run_all(spawn_guards=not args.no_spawn)
    code = print_report(report)

    if report.ok:
        print("\n🎉 Production isolation verified. Local development cannot reach production.")
    else:
        print("\n🚨 Production isolation is NOT guaranteed. Fix the failures above before deploying.")
    return code
