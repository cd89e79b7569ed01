"""Optional Langfuse connection used as a remote prompt source."""
from pathlib import PurePosixPath

from revolucare.config.settings import Settings
from revolucare.config.logging_config import get_logger

logger = get_logger(__name__)


def create_langfuse_client(settings: Settings):
    """
    Connect to Langfuse if both keys are set.

    Returns None when Langfuse is not configured or fails its auth check;
    prompts then come from the packaged files only.
    """
    if not (settings.langfuse_public_key and settings.langfuse_secret_key):
        return None

    from langfuse import Langfuse

    client = Langfuse(
        public_key=settings.langfuse_public_key,
        secret_key=settings.langfuse_secret_key,
        host=settings.langfuse_base_url,
    )
    try:
        client.auth_check()
    except Exception as e:
        logger.warning("Langfuse auth check failed, using local prompts", host=settings.langfuse_base_url, error=str(e))
        return None
    logger.info("Langfuse prompt source enabled", host=settings.langfuse_base_url)
    return client


def shutdown_langfuse(client) -> None:
    if client is None:
        return
    try:
        client.flush()
        client.shutdown()
    except Exception as e:
        logger.warning("Langfuse did not shut down cleanly", error=str(e))


def prompt_path_to_langfuse_name(path: str) -> str:
    """``care_plans/comprehensive.txt`` → ``care_plans--comprehensive``."""
    posix = PurePosixPath(path.replace("\\", "/"))
    if posix.suffix == ".txt":
        posix = posix.with_suffix("")
    return "--".join(posix.parts)
