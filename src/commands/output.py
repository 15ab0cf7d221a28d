"""
Console output helpers shared by commands.
"""

from src.core.models import Report

BANNER_WIDTH = 80


def banner(title: str, char: str = "=") -> None:
    print("\n" + char * BANNER_WIDTH)
    print(title)
    print(char * BANNER_WIDTH)


def section(title: str) -> None:
    print(f"\n{title}")
    print("-" * len(title))


def print_report(report: Report) -> int:
    """Print a report with its verdict and return its exit code."""
    print(report.render())
    if report.ok and report.warning_count:
        print("⚠️  Completed with warnings")
    elif report.ok:
        print("✅ All checks passed")
    else:
        print(f"❌ {report.failed_count} check(s) failed")
    return report.exit_code
