import os
import logging
import uvicorn

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

if os.environ.get("DEBUG", "0") == "1":
    logging.getLogger().setLevel(logging.DEBUG)

from chunkscribe.api import create_app
from chunkscribe.config import get_config

config = get_config()
app = create_app()


def run() -> None:
    logger.info(f"Starting chunkscribe on {config.host}:{config.port}")
    logger.info(
        f"Transcription engine: {config.transcription_engine}, "
        f"concurrency: pipeline={config.concurrency_flash}, glossary={config.concurrency_pro}, "
        f"local={config.local_concurrency}"
    )
    if not config.get_api_key():
        logger.warning("OPENAI_API_KEY is not set; inference calls will fail")
    uvicorn.run(app, host=config.host, port=config.port)


if __name__ == "__main__":
    run()
