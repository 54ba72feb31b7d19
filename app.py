"""ASGI entrypoint: ``uvicorn app:app``."""
from mssql_bridge.app import create_app

app = create_app()
