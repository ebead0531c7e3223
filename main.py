#!/usr/bin/env python3
"""tailf entry point. Follows one file across rotation and writes it to stdout."""

import logging
import signal
import sys
import threading

from tailf.config import load_config
from tailf.controller import RotationController

logger = logging.getLogger(__name__)

_running = True


def _signal_handler(sig, frame):
    global _running
    logger.info("Shutdown signal received (signal %d), stopping...", sig)
    _running = False


def main(argv: list[str] | None = None) -> int:
    global _running
    _running = True

    config = load_config(argv)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [TAILF] %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    logger.info("Following %s (encoding=%s, output=%s, persist=%s, reset=%s)",
                config.target, config.source_charset or "default",
                config.dest_charset or "default", config.persistent, config.reset)

    controller = RotationController(config)
    failure: list[BaseException] = []

    def _watch():
        try:
            controller.run()
        except BaseException as e:
            failure.append(e)

    watch_thread = threading.Thread(target=_watch, name="tailf-watch")
    watch_thread.start()

    try:
        while _running and watch_thread.is_alive():
            watch_thread.join(timeout=1)
    except KeyboardInterrupt:
        pass

    controller.shutdown()
    watch_thread.join()

    if failure:
        logger.error("Fatal: %s", failure[0])
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
