"""
Logging setup for command-line front ends.

Library modules only create loggers; a front end calls configure_logging()
once with the user's verbosity switches.
"""

import logging


def configure_logging(verbose: bool = False, quiet: bool = False) -> int:
    """
    Configure root logging for an interactive invocation.

    Args:
        verbose: Show debug output with logger names
        quiet: Show errors only (ignored if verbose is set)

    Returns:
        The logging level that was applied
    """
    if verbose:
        level = logging.DEBUG
        format_str = "%(levelname)s [%(name)s] %(message)s"
    elif quiet:
        level = logging.ERROR
        format_str = "%(levelname)s: %(message)s"
    else:
        level = logging.INFO
        format_str = "%(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        force=True,  # Reconfigure if already configured
    )
    return level


__all__ = ["configure_logging"]
