from typing import List

from injectscan.core.errors import ConfigError


def read_lines(filename: str) -> List[str]:
    """
    Load a wordlist: one entry per line.

    Blank lines and lines whose first character is '#' are skipped; kept
    lines are trimmed, so an indented '#' is an entry rather than a comment.
    """
    try:
        with open(filename, 'r', encoding='utf-8', errors='ignore') as f:
            raw = f.read()
    except OSError as exc:
        raise ConfigError(f"Error reading file {filename}: {exc}") from exc

    lines = []
    for line in raw.splitlines():
        if not line.strip() or line.startswith('#'):
            continue
        lines.append(line.strip())
    return lines
