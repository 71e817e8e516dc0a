import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, HTTPException, Request

from config import settings
from models import AccountInfo, UsageSnapshot, UsageSummary
from service import UsageMonitor, build_monitor


def create_app(monitor: UsageMonitor | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.monitor = monitor or build_monitor(settings)
        await app.state.monitor.start()
        yield
        await app.state.monitor.stop()

    app = FastAPI(title="Claude Usage Monitor", lifespan=lifespan)

    def _monitor(request: Request) -> UsageMonitor:
        return request.app.state.monitor

    @app.get("/api/summary", response_model=UsageSummary)
    async def summary(request: Request):
        return _monitor(request).summary()

    @app.get("/api/snapshot", response_model=UsageSnapshot)
    async def snapshot(request: Request):
        current = _monitor(request).snapshot
        if current is None:
            raise HTTPException(503, "No usage snapshot yet")
        return current

    @app.get("/api/refresh", response_model=UsageSummary)
    async def refresh(request: Request):
        mon = _monitor(request)
        await mon.rescan_incremental()
        return mon.summary()

    @app.get("/api/rescan", response_model=UsageSummary)
    async def rescan(request: Request):
        mon = _monitor(request)
        await mon.rescan_full()
        return mon.summary()

    @app.get("/api/remote", response_model=UsageSummary)
    async def remote(request: Request):
        mon = _monitor(request)
        await mon.refresh_remote()
        return mon.summary()

    @app.get("/api/account", response_model=AccountInfo)
    async def account(request: Request):
        info = _monitor(request).account
        if info is None:
            raise HTTPException(404, "No Claude account detected")
        return info

    return app


app = create_app()


def main() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    uvicorn.run("app:app", host=settings.api_host, port=settings.api_port, reload=False)


if __name__ == "__main__":
    main()
