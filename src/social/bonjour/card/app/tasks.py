import asyncio
import logging
from typing import NoReturn
from aiohttp import web

from social.bonjour.card.app.config import HealthGaugeAppKey

logger = logging.getLogger(__name__)

HEALTH_TICK_INTERVAL = 30


async def tick_health_task(
    app: web.Application, interval: float = HEALTH_TICK_INTERVAL
) -> NoReturn:
    """
    Tick the health gauge every `interval` seconds, reducing the failure count by 1 each time.
    """

    logger.info("Starting health gauge task")

    health_gauge = app[HealthGaugeAppKey]
    while True:
        await asyncio.sleep(interval)
        await health_gauge.tick()
