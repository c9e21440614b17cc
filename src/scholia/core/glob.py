"""Glob matching for ignore lists and workspace excludes."""

from fnmatch import fnmatchcase


def glob_matches(text: str, pattern: str) -> bool:
    """
    Match text against a glob pattern.

    ``*`` and ``**`` both cross ``/`` boundaries; ``**/`` additionally
    matches zero directories, so ``/images/**/*.png`` matches
    ``/images/a.png`` as well as ``/images/sub/b.png``.
    """
    if fnmatchcase(text, pattern):
        return True
    if "**/" in pattern:
        return fnmatchcase(text, pattern.replace("**/", ""))
    return False


def matches_any(text: str, patterns) -> bool:
    return any(glob_matches(text, p) for p in patterns)
