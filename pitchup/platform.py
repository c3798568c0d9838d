import shutil
import sys


def is_macos() -> bool:
    return sys.platform == "darwin"


def has_terminal_notifier() -> bool:
    return is_macos() and shutil.which("terminal-notifier") is not None
