"""
Production isolation verification.

A read-only audit of the working tree that confirms local development
cannot reach production: env files hold no production values, no source
file embeds production credentials, the old ALLOW_PROD_DB escape hatch is
gone, build and migrate scripts call the guards, and the guards actually
block the classic mistakes when run as separate processes.
"""

import json
import logging
import os
import re
import subprocess
import sys
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

from src.core.env.files import read_env_file
from src.core.models import Report
from src.core.safety import DatabaseUrlClassifier, mask_url

logger = logging.getLogger(__name__)


ENV_FILES = (".env", ".env.local", ".env.development", ".env.production", ".env.staging")
SCAN_DIRECTORIES = ("scripts", "lib", "src")
SCAN_SUFFIXES = (".js", ".ts", ".py", ".sql", ".md")
SKIP_DIRECTORIES = {"node_modules", ".git", "__pycache__", ".next", ".venv"}
GITIGNORE_PATTERNS = (".env*", "DIRECT_CONNECTION_URL.txt")

LOCAL_PRODUCTION_GUARDS = ("block-local-production", "guard-db")
PRISMA_GUARDS = ("validate-env-before-prisma", "guard-db")
MIGRATE_SCRIPTS = ("db:migrate", "db:migrate:deploy", "db:push")

BYPASS_PATTERNS = (
    re.compile(r"ALLOW_PROD_DB\s*={2,3}\s*['\"]true['\"]"),
    re.compile(r"if\b[^\n]*ALLOW_PROD_DB"),
    re.compile(r"ALLOW_PROD_DB['\"]?\s*\]?\s*==\s*['\"]true['\"]"),
)

GUARD_TIMEOUT_SECONDS = 30

Runner = Callable[..., subprocess.CompletedProcess]


def credential_patterns(production_project_ref: str) -> list[tuple[str, re.Pattern]]:
    """Patterns that reveal a production connection string with a password in it."""
    ref = re.escape(production_project_ref)
    return [
        (
            "Full production connection string",
            re.compile(rf"postgres(?:ql)?://[^\s:/@]*{ref}[^\s:/@]*:[^\s@<>]+@", re.IGNORECASE),
        ),
    ]


def _iter_source_files(root: Path, directories: Sequence[str]) -> Iterable[Path]:
    for directory in directories:
        base = root / directory
        if not base.is_dir():
            continue
        for dirpath, dirnames, filenames in os.walk(base):
            dirnames[:] = [d for d in dirnames if d not in SKIP_DIRECTORIES]
            for filename in filenames:
                if filename.endswith(SCAN_SUFFIXES):
                    yield Path(dirpath) / filename


def _read_text(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8", errors="ignore")
    except OSError as e:
        logger.warning("Could not read file", extra={"path": str(path), "error": str(e)})
        return None


class IsolationVerifier:
    """
    Runs every isolation check against a project root.

    The runner is injectable so tests can replace subprocess.run.
    """

    def __init__(
        self,
        root: Path,
        classifier: DatabaseUrlClassifier,
        production_project_ref: str,
        production_urls: Sequence[str] = (),
        scan_directories: Sequence[str] = SCAN_DIRECTORIES,
        runner: Runner = subprocess.run,
        exclude: Sequence[Path] = (),
    ) -> None:
        self._root = Path(root)
        self._classifier = classifier
        self._production_ref = production_project_ref
        self._production_urls = [u for u in production_urls if u]
        self._scan_directories = scan_directories
        self._runner = runner
        self._exclude = {Path(p).resolve() for p in exclude}

    # ------------------------------------------------------------------
    # Individual checks
    # ------------------------------------------------------------------

    def _is_excluded(self, path: Path) -> bool:
        resolved = path.resolve()
        return any(resolved == e or e in resolved.parents for e in self._exclude)

    def _production_markers(self, text: str) -> list[str]:
        markers = [self._production_ref] + self._production_urls
        return [m for m in markers if m and m in text]

    def check_env_file_separation(self, report: Report) -> None:
        """No local env file may carry production values."""
        for name in ENV_FILES:
            path = self._root / name
            if not path.is_file():
                report.skip(f"Env file {name}", "not present")
                continue
            content = _read_text(path) or ""
            found = self._production_markers(content)
            values = read_env_file(path)
            for key in ("DATABASE_URL", "DIRECT_URL"):
                if self._classifier.is_production(values.get(key, ""), values.get("DATABASE_ENV")):
                    found.append(f"{key} points at production ({mask_url(values[key])})")
            if not found:
                report.passed(f"Env file {name}", "no production indicators")
            elif name == ".env.production":
                report.warn(
                    f"Env file {name}",
                    "contains production indicators; production env belongs in the hosting provider",
                )
            else:
                report.failed(
                    f"Env file {name}",
                    "contains production indicators",
                    [f"Found: {marker}" for marker in found],
                )

    def check_hardcoded_credentials(self, report: Report) -> None:
        patterns = credential_patterns(self._production_ref)
        offenders = []
        for path in _iter_source_files(self._root, self._scan_directories):
            if self._is_excluded(path):
                continue
            content = _read_text(path)
            if content is None:
                continue
            for label, pattern in patterns:
                if pattern.search(content):
                    offenders.append(f"{path.relative_to(self._root)}: {label}")

        if offenders:
            report.failed("Hardcoded credentials", f"{len(offenders)} file(s) embed production credentials", offenders)
        else:
            report.passed("Hardcoded credentials", "no production credentials in source")

    def check_bypass_removal(self, report: Report) -> None:
        offenders = []
        for path in _iter_source_files(self._root, self._scan_directories):
            if path.suffix == ".md" or self._is_excluded(path):
                continue
            content = _read_text(path)
            if not content or "ALLOW_PROD_DB" not in content:
                continue
            if any(p.search(content) for p in BYPASS_PATTERNS):
                offenders.append(str(path.relative_to(self._root)))

        if offenders:
            report.failed("ALLOW_PROD_DB bypass", "active bypass found", offenders)
        else:
            report.passed("ALLOW_PROD_DB bypass", "no active bypass")

    def check_gitignore(self, report: Report) -> None:
        path = self._root / ".gitignore"
        if not path.is_file():
            report.warn(".gitignore", "not found")
            return
        content = path.read_text(encoding="utf-8")
        missing = [p for p in GITIGNORE_PATTERNS if p not in content]
        if missing:
            report.warn(".gitignore", "missing patterns", missing)
        else:
            report.passed(".gitignore", "env files and direct URLs are ignored")

    def check_package_scripts(self, report: Report) -> None:
        path = self._root / "package.json"
        if not path.is_file():
            report.skip("package.json scripts", "no package.json")
            return
        try:
            scripts = json.loads(path.read_text(encoding="utf-8")).get("scripts", {})
        except json.JSONDecodeError as e:
            report.failed("package.json scripts", f"invalid JSON: {e}")
            return

        build = scripts.get("build", "")
        if any(guard in build for guard in LOCAL_PRODUCTION_GUARDS):
            report.passed("build script", "blocks local production builds")
        else:
            report.failed("build script", "does not run the local production block")

        for name in MIGRATE_SCRIPTS:
            command = scripts.get(name)
            if command is None:
                continue
            if any(guard in command for guard in PRISMA_GUARDS):
                report.passed(f"{name} script", "runs database validation first")
            else:
                report.warn(f"{name} script", "does not run database validation first")

    def _guard_scenarios(self) -> list[tuple[str, dict[str, str]]]:
        prod_url = (
            f"postgresql://postgres.{self._production_ref}:PLACEHOLDER"
            "@aws-0-eu-west-1.pooler.supabase.com:6543/postgres"
        )
        return [
            (
                "NODE_ENV=production on a local machine",
                {"NODE_ENV": "production", "DATABASE_URL": "postgresql://localhost:5432/connectsa_dev"},
            ),
            (
                "Production database from development",
                {"NODE_ENV": "development", "DATABASE_URL": prod_url, "DIRECT_URL": prod_url},
            ),
            (
                "Production database from test",
                {"NODE_ENV": "test", "DATABASE_URL": prod_url},
            ),
        ]

    def check_guards_block(self, report: Report) -> None:
        """Run guard-db in a child process per mistake; each must exit 1."""
        base_env = {
            key: value
            for key, value in os.environ.items()
            if key not in ("CI", "VERCEL", "VERCEL_ENV", "GITHUB_ACTIONS", "DATABASE_ENV", "DIRECT_URL")
        }
        base_env["PRODUCTION_PROJECT_REF"] = self._production_ref

        for label, overrides in self._guard_scenarios():
            env = {**base_env, **overrides}
            command = [sys.executable, "-m", "src.main", "--no-env-file", "guard-db"]
            try:
                result = self._runner(
                    command,
                    env=env,
                    cwd=str(self._root),
                    capture_output=True,
                    text=True,
                    timeout=GUARD_TIMEOUT_SECONDS,
                )
            except (OSError, subprocess.SubprocessError) as e:
                report.warn(f"Guard: {label}", f"could not run guard: {e}")
                continue

            if result.returncode == 1:
                report.passed(f"Guard: {label}", "blocked")
            else:
                report.failed(
                    f"Guard: {label}",
                    f"not blocked (exit code {result.returncode})",
                )

    # ------------------------------------------------------------------

    def run_all(self, spawn_guards: bool = True) -> Report:
        report = Report("Production isolation")
        self.check_env_file_separation(report)
        self.check_hardcoded_credentials(report)
        self.check_bypass_removal(report)
        self.check_package_scripts(report)
        self.check_gitignore(report)
        if spawn_guards:
            self.check_guards_block(report)
        else:
            report.skip("Guards", "child-process checks disabled")

        logger.info(
            "Isolation verification finished",
            extra={"passed": report.passed_count, "failed": report.failed_count, "warnings": report.warning_count},
        )
        return report
