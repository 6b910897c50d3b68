import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from backend.core import config
from backend.database import Base, engine, ensure_appointment_schema
from backend.models import appointment, counselor, daily_load, user  # noqa: F401
from backend.routes import appointment_routes, availability_routes

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

app = FastAPI(title='Counseling Scheduling API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_appointment_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'Counseling Scheduling API Running'}


app.include_router(availability_routes.router, prefix='/counselors')
app.include_router(appointment_routes.router, prefix='/appointments')
