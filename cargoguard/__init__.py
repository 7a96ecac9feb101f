"""Check Cargo dependency graphs against security advisory databases and registry yanks."""

__version__ = "0.1.0"

__all__ = [
    "advisories",
    "advisories_config",
    "advisory_db",
    "dbpath",
    "diagnostics",
    "duration",
    "krates",
    "report",
    "shellexpand",
    "yank_index",
]