"""Entry point: ``python -m pocket_mail``."""

import asyncio
import sys

from pocket_mail.core.imap.session import MailSession
from pocket_mail.ui.shell import MailShell
from pocket_mail.utils.config import ConfigManager
from pocket_mail.utils.console import get_console
from pocket_mail.utils.errors import ConfigurationError, FileSystemError, format_error_message
from pocket_mail.utils.logging import get_logger, init_logging

logger = get_logger(__name__)


def main() -> int:
    """Main entry point for pocket-mail.

    Returns:
        Exit code (0 for success, >0 for errors)
    """
    console = get_console()

    try:
        config = ConfigManager().config
        init_logging(force=True, **config.logging.model_dump())
    except (ConfigurationError, FileSystemError) as e:
        console.print(f"[red]{format_error_message(e)}:[/red] {e.message}")
        return 2

    shell = MailShell(MailSession(config), console=console)

    try:
        return asyncio.run(shell.run())

    except KeyboardInterrupt:
        logger.warning("Application interrupted by user")
        return 130  # Standard SIGINT exit code

    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
