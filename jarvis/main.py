"""JARVIS background service -- foreground entry point.

Loads config, configures logging, builds the components and runs the
service until it is stopped by voice, by SIGINT/SIGTERM or by an emergency.
"""

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Mapping

from jarvis.assistant.metrics import MetricsLogger
from jarvis.assistant.service import JarvisService
from jarvis.audio.manager import AudioManager
from jarvis.config import ConfigError, load_config
from jarvis.llm.ai_service import AIService
from jarvis.logging_setup import configure_logging
from jarvis.stt import create_stt
from jarvis.system.manager import SystemManager
from jarvis.tts import create_tts
from jarvis.wake.detector import WakeWordDetector

log = logging.getLogger("jarvis")


def build_service(config: Mapping) -> JarvisService:
    audio = AudioManager(config["audio"])
    return JarvisService(
        config=config,
        audio=audio,
        wake_detector=WakeWordDetector(config, audio),
        ai=AIService(config["ai"]),
        system=SystemManager(config),
        stt=create_stt(config["speech"]["stt"]),
        tts=create_tts(config["speech"]["tts"], config["audio"]),
        metrics=MetricsLogger(config["metrics"]),
    )


def _handle_loop_exception(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    exc = context.get("exception")
    log.error("Unhandled error in event loop: %s", context.get("message"), exc_info=exc)


async def run_service(config: Mapping) -> None:
    loop = asyncio.get_running_loop()
    loop.set_exception_handler(_handle_loop_exception)

    service = build_service(config)
    stop_tasks: set[asyncio.Task] = set()

    def _schedule_stop() -> None:
        task = asyncio.ensure_future(service.stop())
        stop_tasks.add(task)
        task.add_done_callback(stop_tasks.discard)

    def shutdown(signum, frame):
        log.info("Received %s, shutting down gracefully...", signal.Signals(signum).name)
        loop.call_soon_threadsafe(_schedule_stop)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        await service.start()
        name = config["jarvis"]["name"]
        print(f"\033[32m{name} background service started. Say \"{config['jarvis']['wakeWord']}\" to wake me up!\033[0m")
        await service.wait_stopped()
    except Exception:
        if service.is_running:
            await service.stop()
        raise

    if service.is_emergency:
        log.warning("Service ended with an emergency stop")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="JARVIS Background Voice Service")
    parser.add_argument("--config", type=str, default=None, help="Path to jarvis.json")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"\033[31m{e}\033[0m")
        return 1

    configure_logging(config["logging"])
    log.info("Starting JARVIS Background Service...")

    try:
        asyncio.run(run_service(config))
    except Exception:
        log.exception("Failed to run JARVIS service")
        return 1

    print("\033[32mGoodbye.\033[0m")
    return 0


if __name__ == "__main__":
    sys.exit(main())
