from contextlib import asynccontextmanager
from typing import Optional

import redis
from fastapi import FastAPI
from loguru import logger
from sqlalchemy.engine import Engine

from config import Settings, get_settings
from database import Base, make_engine, make_session_factory
from errors import register_exception_handlers
from log import setup_logging
from mail import Mailer
from payments import MercadoPagoClient
from routes import admin, auth, contact, notifications, partners, payments, projects, tickets, users, ws
from storage import Storage
from utils import get_password_hash


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[Engine] = None,
    redis_client: Optional[redis.Redis] = None,
    mailer: Optional[Mailer] = None,
    gateway: Optional[MercadoPagoClient] = None,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings)
        db_engine = engine or make_engine(settings)
        Base.metadata.create_all(bind=db_engine)

        app.state.settings = settings
        app.state.session_factory = make_session_factory(db_engine)
        app.state.redis = redis_client or redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            db=settings.redis_db,
            decode_responses=True,
        )
        app.state.mailer = mailer or Mailer(settings)
        app.state.gateway = gateway or MercadoPagoClient(settings)

        if settings.seed_demo_users:
            with app.state.session_factory() as db:
                Storage(db, settings).seed_users(lambda password: get_password_hash(password, settings))

        logger.info("{} started", settings.app_name)
        yield
        if engine is None:
            db_engine.dispose()
        logger.info("{} stopped", settings.app_name)

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    register_exception_handlers(app)

    app.include_router(auth.router)
    app.include_router(contact.router)
    app.include_router(users.router)
    app.include_router(partners.router)
    app.include_router(projects.router)
    app.include_router(tickets.router)
    app.include_router(notifications.router)
    app.include_router(payments.router)
    app.include_router(admin.router)
    app.include_router(ws.router)
    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=8000, reload=True)
