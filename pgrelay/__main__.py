import structlog
import uvicorn
from dotenv import load_dotenv

from pgrelay.config import settings
from pgrelay.utils.env_paths import resolve_backend_env_path

LOG = structlog.stdlib.get_logger()


if __name__ == "__main__":
    load_dotenv(resolve_backend_env_path())
    port = settings.PORT
    LOG.info("Relay server starting.", host="0.0.0.0", port=port)

    uvicorn.run(
        "pgrelay.forge.api_app:create_api_app",
        host="0.0.0.0",
        port=port,
        log_level="info",
        reload=settings.is_local_environment(),
        access_log=False,
        factory=True,
    )
