"""
FastAPI application entry point.

- `app/core/setup.py`: early initialization (env, Sentry, logging)
- `app/core/application.py`: application factory
- `app/api/routes/`: route handlers by domain

Run with `uvicorn app.main:app`.
"""
from app.core.setup import setup_application
from app.core.application import create_application

# Must run before the app is created
setup_application()

app = create_application()
