import asyncio
import logging
from contextlib import asynccontextmanager

import uvicorn
from cachetools import TTLCache
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from api.routes import weather
from bot import build_telegram_app
from services.weather.config import load_weather_settings
from services.weather.governor import WeatherGovernor
from startup import initialize_server

initialize_server()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)


# Start and stop the weather store, scrape scheduler and Telegram bot
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handles startup and shutdown tasks."""
    settings = load_weather_settings()
    governor = WeatherGovernor(settings)
    await governor.start()
    app.state.weather_governor = governor

    telegram_app = build_telegram_app(governor.service)
    bot_task: asyncio.Task | None = None
    if telegram_app is not None:
        logging.info("Starting Telegram bot inside FastAPI lifespan...")
        await telegram_app.initialize()
        bot_task = asyncio.create_task(telegram_app.updater.start_polling())
        await telegram_app.start()

    scrape_stop_event = asyncio.Event()
    scrape_task: asyncio.Task | None = None
    if settings.scrape_enabled:
        scrape_task = asyncio.create_task(governor.scrape_job.run_forever(scrape_stop_event, settings.scrape_minute))

    try:
        yield  # Continue running FastAPI
    finally:
        scrape_stop_event.set()
        if scrape_task:
            try:
                await scrape_task
            except asyncio.CancelledError:
                logging.info("Weather scrape scheduler cancelled during shutdown.")
        if telegram_app is not None:
            await telegram_app.updater.stop()
            await telegram_app.stop()
            await telegram_app.shutdown()
            if bot_task:
                bot_task.cancel()
            logging.info("Telegram bot stopped.")
        await governor.close()


app = FastAPI(
    title="Weather Watch",
    description="Tracks rain and snow at registered locations and suggests where the weather is good",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(weather.router)

validation_error_cache = TTLCache(maxsize=1000, ttl=600)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Log each client's validation failure once per route within ten minutes and answer 422."""
    exc_str = f"{exc}".replace("\n", " ").replace("   ", " ")
    client_host = request.client.host if request.client else "unknown"
    request_id = f"{request.url.path}-{client_host}"
    if request_id not in validation_error_cache:
        validation_error_cache[request_id] = True
        logging.error(f"Validation error on {request.url}: {exc_str}")

    content = {"error": "invalid_request", "message": exc_str}
    return JSONResponse(content=content, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)


@app.get("/")
async def root():
    logging.info("Received request on /")
    return {"message": "Welcome to the weather service"}


@app.get("/health")
async def health_check():
    logging.info("Health check request received")
    governor = getattr(app.state, "weather_governor", None)
    store_open = governor is not None and governor.store.is_open
    return {"status": "healthy" if store_open else "degraded", "store_open": store_open}


if __name__ == "__main__":
    logging.info("Starting FastAPI server...")
    uvicorn.run(app, host="0.0.0.0", port=6969)
