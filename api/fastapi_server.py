import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import Response
from fastapi.middleware.cors import CORSMiddleware
from config import ConfigurationError, config
from config.utils import get_config_section
from ingest.upbit_rest import TRANSIENT_ERRORS
from monitoring.logging_utils import setup_logging


logger = logging.getLogger(__name__)


trading_system = None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ConnectionManager:
    def __init__(self):
        self.active_connections: List[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)

    async def broadcast(self, message: Dict):
        for connection in list(self.active_connections):
            try:
                await connection.send_json(message)
            except (WebSocketDisconnect, RuntimeError):
                self.disconnect(connection)

manager = ConnectionManager()


def _on_session_event(event) -> None:
    payload = {"type": "session", **event.as_dict()}
    try:
        asyncio.get_running_loop().create_task(manager.broadcast(payload))
    except RuntimeError:
        logger.debug("No running loop; session event not broadcast")


@asynccontextmanager
async def lifespan(app: FastAPI):
    global trading_system
    if trading_system is None:
        from main import TradingSystem
        trading_system = TradingSystem()
    await trading_system.start()
    trading_system.controller.subscribe(_on_session_event)
    try:
        yield
    finally:
        trading_system.controller.unsubscribe(_on_session_event)
        await trading_system.stop()


def _require_system():
    if trading_system is None:
        raise HTTPException(status_code=503, detail="Trading system not initialized")
    return trading_system


app = FastAPI(title="Upbit Session Trader API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config_section(config, 'api').get('cors_origins') or [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/")
async def root():
    return {
        "service": "Upbit Session Trader",
        "version": "1.0.0",
        "status": "trading" if trading_system and trading_system.controller.is_trading else "idle"
    }

@app.get("/favicon.ico")
async def favicon():
    return Response(content=b"", media_type="image/x-icon")

@app.get("/health")
async def health():
    return {
        "status": "healthy",
        "timestamp": _now(),
        "system_running": trading_system.running if trading_system else False
    }

@app.get("/api/session")
async def get_session():
    system = _require_system()
    return {"session": system.controller.snapshot().as_dict(), "timestamp": _now()}

@app.post("/api/session/toggle")
async def toggle_session():
    system = _require_system()
    try:
        state = await system.controller.toggle()
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"state": state.value, "session": system.controller.snapshot().as_dict(), "timestamp": _now()}

@app.get("/api/balances")
async def get_balances():
    system = _require_system()
    try:
        balances = await system.fetch_balances()
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except TRANSIENT_ERRORS as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    quote = system.settings.quote_currency
    out = [
        {
            "currency": b.currency,
            "free": b.free,
            "locked": b.locked,
            "avg_buy_price": b.avg_buy_price,
            "unit_currency": b.unit_currency,
        }
        for b in balances
    ]
    quote_free = next((b.free for b in balances if b.currency == quote), 0.0)
    return {"balances": out, "quote_currency": quote, "quote_free": quote_free, "timestamp": _now()}

@app.get("/api/logs")
async def get_logs(limit: Optional[int] = 100):
    system = _require_system()
    lines = system.log_stream.recent(limit)
    return {"lines": lines, "count": len(lines), "timestamp": _now()}

@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await manager.connect(websocket)
    queue = trading_system.log_stream.subscribe() if trading_system else None
    try:
        if trading_system:
            await websocket.send_json({
                "type": "snapshot",
                "session": trading_system.controller.snapshot().as_dict(),
                "logs": trading_system.log_stream.recent(50),
            })
        while True:
            if queue is None:
                await asyncio.sleep(1)
                continue
            line = await queue.get()
            await websocket.send_json({"type": "log", "line": line, "timestamp": _now()})
    except WebSocketDisconnect:
        pass
    finally:
        if queue is not None and trading_system:
            trading_system.log_stream.unsubscribe(queue)
        manager.disconnect(websocket)

if __name__ == "__main__":
    import uvicorn
    setup_logging()
    api_cfg = get_config_section(config, 'api')
    uvicorn.run(
        app,
        host=api_cfg.get('host', '127.0.0.1'),
        port=int(api_cfg.get('port', 8000)),
        log_level="info"
    )
