from pgrelay.forge.sdk.forge_log import setup_logger

setup_logger()
