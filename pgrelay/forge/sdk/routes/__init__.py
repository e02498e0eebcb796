# Importing the route modules registers their handlers on the routers.
from pgrelay.forge.sdk.routes import server, streaming  # noqa: F401
