import logging
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from datetime import datetime
from app.core.config import settings
from app.core.exceptions import PricingError
from app.middleware.metrics import MetricsMiddleware, new_metrics
from app.routes import system
from app.database.connection import Base, engine
from app.routes.pricing.recommend import router as recommend_router
from app.routes.pricing.rules import router as rules_router
from app.routes.pricing.history import router as history_router
from app.routes.pricing.competitors import router as competitors_router
from app.routes.pricing.forecast import router as forecast_router
from app.routes.pricing.experiments import router as experiments_router
from app.routes.pricing.surge import router as surge_router
from app.routes.analytics import router as analytics_router
from app.services.scheduler_service import start_background_loops, stop_background_loops
from app.routes.auth import router as auth_router

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

Base.metadata.create_all(bind=engine)

app = FastAPI(title="Dynamic Pricing Engine")

app.add_middleware(MetricsMiddleware)


@app.exception_handler(PricingError)
async def pricing_error_handler(request: Request, exc: PricingError):
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", exc.error_code, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content=jsonable_encoder({
            "error_code": "validation_error",
            "message": "Request validation failed",
            "details": {"errors": exc.errors()},
        }),
    )


app.include_router(auth_router)
app.include_router(recommend_router)
app.include_router(rules_router)
app.include_router(history_router)
app.include_router(competitors_router)
app.include_router(forecast_router)
app.include_router(experiments_router)
app.include_router(surge_router)
app.include_router(analytics_router)
app.include_router(system.router)

@app.on_event("startup")
async def startup_event():
    app.state.start_time = datetime.utcnow()
    app.state.metrics = new_metrics()
    app.state.background_tasks = start_background_loops() if settings.SCHEDULER_ENABLED else []
    logger.info("Pricing engine started (scheduler=%s)", settings.SCHEDULER_ENABLED)


@app.on_event("shutdown")
async def shutdown_event():
    await stop_background_loops(getattr(app.state, "background_tasks", []))
    logger.info("Pricing engine stopped")
