"""
CLI commands.

Each module registers its subcommands on the shared argparse parser and
returns an exit code: 0 for success (warnings allowed), 1 for any failure.
"""
