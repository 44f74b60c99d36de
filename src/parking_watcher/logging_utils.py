import logging


def setup_logging(debug: bool = False) -> None:
    """Configure logging for the CLI tools and the API."""
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    # requests logs every connection at DEBUG; one per spot is noisy
    if not debug:
        logging.getLogger("urllib3").setLevel(logging.WARNING)
