"""
Environment configuration loading for the settings package.

Each environment reads its variables through python-decouple from a
dedicated ``.env.<name>`` file at the repository root, falling back to
process environment variables when the file is absent.
"""

from pathlib import Path

from decouple import Config, RepositoryEnv
from decouple import config as default_config

ENV_FILES = {
    "development": ".env.dev",
    "production": ".env.production",
    "test": ".env.test",
}

REPOSITORY_ROOT = Path(__file__).resolve().parent.parent.parent.parent


def load_environment_config(environment):
    """
    Return a decouple config callable bound to the environment's ``.env`` file.

    Args:
        environment (str): 'development', 'production' or 'test'

    Returns:
        Callable compatible with ``decouple.config``.
    """
    env_file_name = ENV_FILES.get(environment, ".env")
    env_file_path = REPOSITORY_ROOT / env_file_name

    if env_file_path.exists():
        print(f"✓ Loading environment: {environment} from {env_file_name}")
        return Config(RepositoryEnv(str(env_file_path)))

    print(f"✗ Warning: {env_file_name} not found, using process environment")
    return default_config
