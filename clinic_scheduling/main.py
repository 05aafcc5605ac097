import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from clinic_scheduling.core import config
from clinic_scheduling.database import ensure_scheduling_schema
from clinic_scheduling.models import availability, blackout, booking, slot, user  # noqa: F401
from clinic_scheduling.routes import appointment_routes, auth_routes, availability_routes
from clinic_scheduling.scheduling.errors import SchedulingError
from clinic_scheduling.schemas import ErrorResponse

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title='Clinic Scheduling API', debug=config.DEBUG)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.on_event('startup')
async def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        await ensure_scheduling_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.exception_handler(SchedulingError)
async def handle_scheduling_error(request: Request, exc: SchedulingError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={'error': exc.error_code, 'message': exc.message},
    )


@app.exception_handler(SQLAlchemyError)
async def handle_database_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception('Database error while handling %s %s', request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            'error': 'database_unavailable',
            'message': 'Database unavailable. Please try again shortly.',
        },
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception('Unexpected error while handling %s %s', request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={'error': 'internal_error', 'message': 'Something went wrong. Please try again.'},
    )


@app.get('/')
def root():
    return {'status': 'Clinic Scheduling API Running'}


ERROR_RESPONSES = {code: {'model': ErrorResponse} for code in (400, 404, 409, 503)}

app.include_router(auth_routes.router, prefix='/auth')
app.include_router(availability_routes.router, prefix='/availability', responses=ERROR_RESPONSES)
app.include_router(appointment_routes.router, prefix='/appointments', responses=ERROR_RESPONSES)
