import os
import logging
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

ENV_FILES = (".env", ".env.local")
ENV_FILE_VAR = "QUATFOLD_ENV_FILE"


def env_search_path(path: Optional[str] = None) -> List[str]:
    """
    Files to try, in order: an explicit file, the .env files of an explicit
    directory, the file named by QUATFOLD_ENV_FILE, or the .env files of the
    working directory followed by the checkout root.
    """
    if path and not os.path.isdir(path):
        return [path]
    if path:
        dirs = [path]
    elif os.environ.get(ENV_FILE_VAR):
        return [os.environ[ENV_FILE_VAR]]
    else:
        dirs = [os.getcwd(), os.path.dirname(os.path.dirname(os.path.abspath(__file__)))]
    out = []
    for d in dirs:
        for name in ENV_FILES:
            candidate = os.path.join(d, name)
            if candidate not in out:
                out.append(candidate)
    return out


def parse_env_line(line: str) -> Optional[Tuple[str, str]]:
    """KEY=VALUE with optional `export ` prefix and surrounding quotes; None for blanks and comments."""
    text = line.strip()
    if text.startswith("export "):
        text = text[len("export "):]
    if not text or text[0] == "#" or "=" not in text:
        return None
    key, _, value = text.partition("=")
    key = key.strip()
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        value = value[1:-1]
    return (key, value) if key else None


def read_env_file(path: str) -> Dict[str, str]:
    values = {}
    with open(path, encoding="utf-8") as handle:
        for lineno, line in enumerate(handle, start=1):
            pair = parse_env_line(line)
            if pair is None:
                if line.strip() and not line.lstrip().startswith("#"):
                    logger.debug(f"{path}:{lineno}: ignoring line without KEY=VALUE")
                continue
            values[pair[0]] = pair[1]
    return values


def load_env(path: Optional[str] = None, override: bool = False) -> List[str]:
    """
    Export settings from .env files into os.environ. Variables already set in
    the environment take precedence unless override is true. Returns the
    files that were read.
    """
    loaded = []
    for candidate in env_search_path(path):
        if not os.path.isfile(candidate):
            continue
        try:
            values = read_env_file(candidate)
        except OSError as e:
            logger.warning(f"Could not read env file {candidate}: {e}")
            continue
        for key, value in values.items():
            if override or key not in os.environ:
                os.environ[key] = value
        logger.debug(f"Loaded {len(values)} settings from {candidate}")
        loaded.append(candidate)
    return loaded
