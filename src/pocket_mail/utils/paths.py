"""Centralized path definitions for pocket-mail.

Everything the client writes (config, logs) lives under one home directory,
``$POCKET_MAIL_HOME`` when set and ``~/.pocket_mail`` otherwise.
"""

import os
from pathlib import Path

APP_DIR = Path(os.environ.get("POCKET_MAIL_HOME") or Path.home() / ".pocket_mail")

LOGS_DIR = APP_DIR / "logs"
CONFIG_PATH = APP_DIR / "config.json"
