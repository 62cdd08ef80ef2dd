"""Command-line subcommands (setup_parser/execute per module)."""
