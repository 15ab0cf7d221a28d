"""
Marketplace ops - guards, diagnostics and fixups for the marketplace.

This package contains the complete toolkit:
- core: Framework-agnostic rules (env validation, database safety, escrow, catalogue)
- infrastructure: PostgreSQL and Paystack integrations
- commands: CLI commands built on core and infrastructure
- config: Application configuration
"""

__version__ = "0.1.0"
