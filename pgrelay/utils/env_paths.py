from pathlib import Path

from pgrelay.constants import REPO_ROOT_DIR

BACKEND_ENV_FILENAME = ".env"


def resolve_backend_env_path(filename: str = BACKEND_ENV_FILENAME) -> Path:
    """Return the preferred .env path.

    Preference order:
        1. Package root file if it exists.
        2. Current working directory file if it exists.
        3. Package root, even if missing.
    """

    package_env = REPO_ROOT_DIR / filename
    if package_env.exists():
        target = package_env
    else:
        cwd_env = Path.cwd() / filename
        target = cwd_env if cwd_env.exists() else package_env

    return target
