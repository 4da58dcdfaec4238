"""
REPL Engine - Device Scripts
=============================
Builds small MicroPython programs that are sent through a session to
manage files on the board.
"""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import List


def escape_python_string(content: str) -> str:
    """Escape text for a single-quoted Python string literal."""
    return (content.replace('\\', '\\\\')
                   .replace("'", "\\'")
                   .replace('"', '\\"')
                   .replace('\n', '\\n')
                   .replace('\r', '\\r')
                   .replace('\t', '\\t'))


def parent_dirs(device_path: str) -> List[str]:
    """
    List the directories that must exist before writing device_path.

    >>> parent_dirs("lib/drivers/bme280.py")
    ['lib', 'lib/drivers']
    """
    parts = PurePosixPath(device_path.lstrip('/')).parts[:-1]
    dirs = []
    acc = ''
    for part in parts:
        acc = f"{acc}/{part}" if acc else part
        dirs.append(acc)
    return dirs


def make_dirs_script(directory: str) -> str:
    # MicroPython's os has no makedirs, so create one level at a time
    path = escape_python_string(directory)
    return (
        "\nimport os\n"
        "try:\n"
        f"    os.mkdir('{path}')\n"
        "except OSError as e:\n"
        "    if e.args[0] != 17:\n"
        "        print('DIR_ERROR:', e)\n"
    )


def write_file_script(device_path: str, content: str) -> str:
    path = escape_python_string(device_path)
    body = escape_python_string(content)
    return (
        "\ntry:\n"
        f"    with open('{path}', 'w') as _f:\n"
        f"        _f.write('{body}')\n"
        "except Exception as e:\n"
        "    print('FILE_ERROR:', e)\n"
    )
