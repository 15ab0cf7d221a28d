"""
Environment variable validation rules.

Two rule sets exist:
- APPLICATION_RULES: what the app needs to boot in any environment
- development_rules(): stricter rules for .env.development, which must
  point at local/dev services only and never at production

Rules only describe what a valid value looks like. Validation never
echoes a value back, because most of these variables are secrets.
"""

import re
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from src.core.models import CheckResult, CheckStatus, Report


EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"
LOCAL_APP_URL = "http://localhost:3000"


@dataclass(frozen=True)
class EnvVarRule:
    """How a single environment variable must look."""
    description: str
    required: bool = True
    pattern: Optional[str] = None
    min_length: Optional[int] = None
    expected: Optional[str] = None
    not_contain: tuple[str, ...] = ()
    production_only: bool = False


APPLICATION_RULES: dict[str, EnvVarRule] = {
    "DATABASE_URL": EnvVarRule(
        description="PostgreSQL connection string (pooled)",
        pattern=r"^postgresql://",
    ),
    "DIRECT_URL": EnvVarRule(
        description="PostgreSQL direct connection string for migrations",
        pattern=r"^postgresql://",
    ),
    "JWT_SECRET": EnvVarRule(
        description="Secret used to sign session tokens",
        min_length=32,
    ),
    "NEXTAUTH_SECRET": EnvVarRule(
        description="NextAuth secret",
        min_length=32,
    ),
    "NEXTAUTH_URL": EnvVarRule(
        description="Canonical app URL for NextAuth",
        pattern=r"^https?://",
    ),
    "NEXT_PUBLIC_APP_URL": EnvVarRule(
        description="Public app URL",
        pattern=r"^https?://",
    ),
    "RESEND_API_KEY": EnvVarRule(
        description="Resend API key for transactional email",
        pattern=r"^re_",
    ),
    "FROM_EMAIL": EnvVarRule(
        description="Sender address for transactional email",
        pattern=EMAIL_PATTERN,
    ),
    "PAYSTACK_SECRET_KEY": EnvVarRule(
        description="Paystack secret key",
        pattern=r"^sk_(test_|live_)",
        production_only=True,
    ),
    "PAYSTACK_PUBLIC_KEY": EnvVarRule(
        description="Paystack public key",
        pattern=r"^pk_(test_|live_)",
        production_only=True,
    ),
    "VAPID_PUBLIC_KEY": EnvVarRule(
        description="Web push public key",
        required=False,
    ),
    "VAPID_PRIVATE_KEY": EnvVarRule(
        description="Web push private key",
        required=False,
    ),
}


def development_rules(
    production_indicators: Sequence[str],
    production_urls: Sequence[str] = (),
) -> dict[str, EnvVarRule]:
    """
    Rules for .env.development.

    production_indicators are substrings (project refs, hostnames) that
    identify production and must not appear in any database or Supabase
    value. production_urls are app hostnames that must not appear in
    URL variables.
    """
    db_blocklist = tuple(production_indicators)
    url_blocklist = tuple(production_urls)

    return {
        "NODE_ENV": EnvVarRule(
            description="Must be development",
            expected="development",
        ),
        "DATABASE_URL": EnvVarRule(
            description="Development database (pooled)",
            pattern=r"^postgresql://",
            not_contain=db_blocklist,
        ),
        "DIRECT_URL": EnvVarRule(
            description="Development database (direct)",
            pattern=r"^postgresql://",
            not_contain=db_blocklist,
        ),
        "NEXT_PUBLIC_SUPABASE_URL": EnvVarRule(
            description="Development Supabase project URL",
            pattern=r"^https://.*\.supabase\.co$",
            not_contain=db_blocklist,
        ),
        "NEXT_PUBLIC_SUPABASE_ANON_KEY": EnvVarRule(
            description="Development Supabase anon key",
            pattern=r"^eyJ",
        ),
        "SUPABASE_SERVICE_ROLE_KEY": EnvVarRule(
            description="Development Supabase service role key",
            pattern=r"^eyJ",
        ),
        "JWT_SECRET": EnvVarRule(
            description="Development JWT secret",
            min_length=32,
        ),
        "JWT_EXPIRES_IN": EnvVarRule(
            description="JWT lifetime, e.g. 7d",
        ),
        "NEXTAUTH_SECRET": EnvVarRule(
            description="Development NextAuth secret",
            min_length=32,
        ),
        "NEXTAUTH_URL": EnvVarRule(
            description="Must point at the local dev server",
            expected=LOCAL_APP_URL,
            not_contain=url_blocklist,
        ),
        "NEXT_PUBLIC_APP_URL": EnvVarRule(
            description="Must point at the local dev server",
            expected=LOCAL_APP_URL,
            not_contain=url_blocklist,
        ),
        "COOKIE_DOMAIN": EnvVarRule(
            description="Cookies scoped to localhost",
            expected="localhost",
        ),
        "PAYSTACK_SECRET_KEY": EnvVarRule(
            description="Paystack test secret key",
            pattern=r"^sk_test_",
        ),
        "PAYSTACK_PUBLIC_KEY": EnvVarRule(
            description="Paystack test public key",
            pattern=r"^pk_test_",
        ),
        "PAYSTACK_TEST_MODE": EnvVarRule(
            description="Paystack must run in test mode",
            expected="true",
        ),
        "PRISMA_DISABLE_PREPARED_STATEMENTS": EnvVarRule(
            description="Prepared statements stay enabled for direct dev connections",
            required=False,
            expected="false",
        ),
        "LOG_LEVEL": EnvVarRule(
            description="Log verbosity",
            required=False,
        ),
        "VAPID_PUBLIC_KEY": EnvVarRule(
            description="Web push public key",
            required=False,
        ),
        "VAPID_PRIVATE_KEY": EnvVarRule(
            description="Web push private key",
            required=False,
        ),
    }


def validate_env_var(
    key: str,
    rule: EnvVarRule,
    env: Mapping[str, str],
    is_production: bool = False,
) -> CheckResult:
    """Validate one variable against its rule."""
    if rule.production_only and not is_production:
        return CheckResult(key, CheckStatus.SKIPPED, "Skipped (production-only)")

    value = env.get(key)
    if value is None or value == "":
        if rule.required:
            return CheckResult(key, CheckStatus.FAILED, "Missing required variable", [rule.description])
        return CheckResult(key, CheckStatus.WARNING, "Optional (recommended)", [rule.description])

    if rule.expected is not None and value != rule.expected:
        return CheckResult(key, CheckStatus.FAILED, f"Expected '{rule.expected}'", [rule.description])

    if rule.pattern and not re.search(rule.pattern, value):
        return CheckResult(key, CheckStatus.FAILED, "Invalid format", [f"Expected pattern: {rule.pattern}"])

    if rule.min_length and len(value) < rule.min_length:
        return CheckResult(key, CheckStatus.FAILED, f"Must be at least {rule.min_length} characters")

    for indicator in rule.not_contain:
        if indicator and indicator in value:
            return CheckResult(
                key,
                CheckStatus.FAILED,
                "Contains production indicator",
                [f"Found: {indicator}"],
            )

    return CheckResult(key, CheckStatus.PASSED, "Valid")


def validate_environment(
    env: Mapping[str, str],
    rules: Mapping[str, EnvVarRule] = APPLICATION_RULES,
    is_production: bool = False,
    title: str = "Environment variables",
) -> Report:
    """Validate every rule in a rule set."""
    report = Report(title)
    for key, rule in rules.items():
        report.add(validate_env_var(key, rule, env, is_production))
    return report


def key_mode(key: str) -> Optional[str]:
    """Return 'test' or 'live' for a Paystack key, None when unrecognised."""
    match = re.match(r"^[sp]k_(test|live)_", key or "")
    return match.group(1) if match else None


def validate_paystack_key_consistency(env: Mapping[str, str], is_production: bool) -> Report:
    """
    Cross-check the Paystack keys against each other and the environment.

    Mixing a test secret with a live public key (or vice versa) breaks
    checkout in confusing ways, so it is an error. Using the "wrong" mode
    for an environment is only a warning: staging may legitimately run on
    test keys.
    """
    report = Report("Paystack key consistency")
    secret_mode = key_mode(env.get("PAYSTACK_SECRET_KEY", ""))
    public_mode = key_mode(env.get("PAYSTACK_PUBLIC_KEY", ""))

    if not secret_mode or not public_mode:
        return report

    if secret_mode != public_mode:
        report.failed(
            "Key mode",
            "Secret and public keys are from different modes",
            [f"Secret: {secret_mode.upper()}, Public: {public_mode.upper()}"],
        )
        return report

    report.passed("Key mode", f"Both keys are {secret_mode.upper()}")

    if is_production and secret_mode == "test":
        report.warn("Production keys", "Using TEST keys in production. Payments will not be real.")
    if not is_production and secret_mode == "live":
        report.warn("Development keys", "Using LIVE keys outside production. Real money will move.")

    test_mode = env.get("PAYSTACK_TEST_MODE", "").lower()
    if test_mode == "true" and secret_mode == "live":
        report.failed("PAYSTACK_TEST_MODE", "Test mode is enabled but LIVE keys are configured")
    if is_production and test_mode == "false" and secret_mode == "test":
        report.warn("PAYSTACK_TEST_MODE", "Test mode is disabled but TEST keys are configured")

    return report
