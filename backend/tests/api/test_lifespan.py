"""Application lifespan — wiring of store, step log, runtime, and scheduler."""

import logging

import pmiflow.infrastructure.database as db_module
from pmiflow.config import get_settings
from pmiflow.main import app, lifespan
from pmiflow.services.workflow_runtime import WorkflowRuntime


async def test_lifespan_wires_services_and_tears_down(monkeypatch, tmp_path):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'life.db'}")
    monkeypatch.setenv("SCHEDULER_ENABLED", "false")
    monkeypatch.setenv("LOG_FORMAT", "text")
    get_settings.cache_clear()
    original_manager = db_module.db_manager
    try:
        async with lifespan(app):
            assert isinstance(app.state.runtime, WorkflowRuntime)
            assert app.state.step_log is app.state.runtime.step_log
            assert db_module.db_manager is not None
            assert await db_module.db_manager.health_check()
    finally:
        get_settings.cache_clear()
        db_module.db_manager = original_manager
        for handler in list(logging.root.handlers):
            if handler.get_name() == "pmiflow":
                logging.root.removeHandler(handler)
