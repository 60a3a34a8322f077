#!/usr/bin/env python3
"""
SpotiSwitch Runner - starts the player service and the local UI API
"""

import os
import signal
import sys
import threading

from waitress import serve

from spotiswitch.app import create_app
from spotiswitch.config import load_config
from spotiswitch.services.player_service import PlayerService
from spotiswitch.utils.logger import log_shutdown, log_startup, set_log_level, setup_logger
from spotiswitch.version import APP_NAME, VERSION


def _request_exit() -> None:
    # Let the quit response go out before waitress sees the interrupt.
    timer = threading.Timer(0.2, os.kill, args=(os.getpid(), signal.SIGINT))
    timer.daemon = True
    timer.start()


def main() -> int:
    logger = setup_logger("spotiswitch")
    log_startup(logger, f"{APP_NAME} v{VERSION}")

    config = load_config()
    set_log_level(logger, config.log_level)
    if not config.client_id:
        logger.warning("⚠️ SPOTIFY_CLIENT_ID is not set; authorization will be unavailable")

    service = PlayerService(config, on_quit=_request_exit)
    app = create_app(service)
    service.start()

    threads = int(os.environ.get("SPOTISWITCH_WAITRESS_THREADS", "4"))
    logger.info(f"🍽️ Serving on http://{config.host}:{config.port} (threads={threads})")
    try:
        serve(app, host=config.host, port=config.port, threads=threads)
    except KeyboardInterrupt:
        pass
    finally:
        if service.is_initialized():
            service.stop()
        log_shutdown(logger, APP_NAME)
    return 0


if __name__ == "__main__":
    sys.exit(main())
