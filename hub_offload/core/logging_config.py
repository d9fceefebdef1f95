import logging

from hub_offload.core.config import settings

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: str = None) -> None:
    """Configure root logging once per process (worker, API, scripts)"""
    logging.basicConfig(
        level=getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    # Playwright's asyncio transport is chatty at DEBUG
    logging.getLogger("asyncio").setLevel(logging.WARNING)
