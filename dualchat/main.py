# dualchat/main.py
import asyncio
import logging

import uvicorn

from dualchat.api import create_app
from dualchat.core import build_core
from dualchat.electrons.logger import LoggerElectron
from dualchat.electrons.validator import ValidationElectron
from dualchat.engine import PipelineEngine
from dualchat.gateway import ClientGateway
from dualchat.nucleus.router import Router
from dualchat.settings import Settings


async def main(settings: Settings | None = None):
    """
    The main entry point for the dual-transport chat server.
    """
    settings = settings or Settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s [%(levelname)s] (%(name)s) %(message)s"
    )
    logger = logging.getLogger("DualChat_Main")

    # 1. Build the delivery core from explicit settings.
    logger.info("Initializing delivery core...")
    core = build_core(settings)
    await core.check_store_connection()

    # 2. The nucleus router is the last step of the live-channel pipeline.
    router = Router(core.dispatcher, core.monitor)
    pipeline_engine = PipelineEngine(
        electrons=[
            LoggerElectron(),
            ValidationElectron(),  # Validation must run right before the nucleus.
        ],
        nucleus_handler=router.route,
    )

    # 3. Outer surfaces: websocket gateway for the live channel, HTTP for everything else.
    client_gateway = ClientGateway(
        settings.SERVER_HOST,
        settings.WS_PORT,
        core.registry,
        core.live_channel,
        pipeline_engine,
        core.monitor,
    )
    http_server = uvicorn.Server(uvicorn.Config(
        create_app(core),
        host=settings.SERVER_HOST,
        port=settings.HTTP_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    ))

    # 4. Start the monitor (it checks immediately) and the servers.
    monitor_task = core.monitor.start()
    gateway_task = asyncio.create_task(client_gateway.start())
    http_task = asyncio.create_task(http_server.serve())

    logger.info(
        f"Starting {settings.SERVICE_NAME} {settings.SERVICE_VERSION}: "
        f"HTTP on {settings.SERVER_HOST}:{settings.HTTP_PORT}, "
        f"live channel on {settings.SERVER_HOST}:{settings.WS_PORT}, "
        f"content store {'enabled' if core.content_store.enabled else 'disabled'}."
    )
    try:
        # uvicorn owns SIGINT/SIGTERM; once it returns, everything else is torn down.
        await asyncio.wait({http_task, gateway_task, monitor_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        logger.info("Shutting down gracefully...")
        http_server.should_exit = True
        gateway_task.cancel()
        await asyncio.gather(http_task, gateway_task, return_exceptions=True)
        await core.aclose()
        logger.info("Server shutdown completed.")


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nServer is shutting down.")


if __name__ == "__main__":
    run()
