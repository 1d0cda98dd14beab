"""PlayerHouse spin service.

Main FastAPI application integrating:
- Delegation setup on the preferred network
- Network switching (with extension wallet confirmation)
- Game surface message channel (``/ws/game``)
- Session status and connection health
"""

import asyncio

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect

from src.config import config, validate_config_for_service
from src.database import db
from src.logging_utils import CorrelationIdContext, generate_correlation_id, get_logger, setup_logging
from src.playerhouse.errors import SetupError
from src.playerhouse.networks import is_known_network, list_networks
from src.playerhouse.session import PlayerSession
from src.playerhouse.wallets import EmbeddedWallet, ExtensionWallet, HttpJsonRpcProvider

# Setup logging
setup_logging(config.log_level, config.log_format)
logger = get_logger(__name__)

# Create FastAPI app
app = FastAPI(
    title="PlayerHouse",
    description="Slot spin orchestrator over delegated smart accounts",
)

session = PlayerSession(db)


def build_wallets() -> list:
    """Owner signers available from configuration."""
    wallets = []
    if config.owner_private_key:
        wallets.append(EmbeddedWallet.from_key(config.owner_private_key))
    if config.extension_wallet_rpc_url:
        wallets.append(ExtensionWallet(HttpJsonRpcProvider(config.extension_wallet_rpc_url)))
    return wallets


async def delayed_setup(delay: float) -> None:
    """Run session setup once wallets had time to settle."""
    await asyncio.sleep(delay)
    with CorrelationIdContext(generate_correlation_id("setup")):
        try:
            await session.setup()
        except SetupError as e:
            logger.warning(f"Initial setup did not complete: {e}")


@app.on_event("startup")
async def startup():
    """Initialize database and start session setup."""
    logger.info("Initializing PlayerHouse service...")
    await db.initialize()
    await session.load_preferences()
    if not session.wallets:
        session.wallets = build_wallets()
    if session.wallets:
        app.state.setup_task = asyncio.create_task(delayed_setup(config.setup_delay_seconds))
    logger.info(f"PlayerHouse service initialized on {session.network_key}")


@app.on_event("shutdown")
async def shutdown():
    """Release the delegation, network clients and wallet providers."""
    setup_task = getattr(app.state, "setup_task", None)
    if setup_task is not None and not setup_task.done():
        setup_task.cancel()
    await session.close()


@app.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "playerhouse",
        "connection": session.health.snapshot(),
    }


@app.get("/status")
async def get_status() -> dict:
    """Session status behind the wallet indicator."""
    return session.status().model_dump()


@app.get("/networks")
async def get_networks() -> list[dict]:
    """Registered networks."""
    return [
        {"key": p.key, "name": p.name, "chain_id": p.chain_id, "active": p.key == session.network_key}
        for p in list_networks()
    ]


@app.post("/network/confirm")
async def confirm_network_switch() -> dict:
    """Confirm a pending network switch (extension wallets)."""
    if session.pending_network_switch is None:
        raise HTTPException(status_code=409, detail="No network switch pending")
    switched = await session.confirm_network_switch()
    return {"switched": switched, "status": session.status().model_dump()}


@app.post("/network/cancel")
async def cancel_network_switch() -> dict:
    """Drop a pending network switch."""
    session.cancel_network_switch()
    return {"status": session.status().model_dump()}


@app.post("/network/{network_key}")
async def switch_network(network_key: str) -> dict:
    """Switch the active network.

    Args:
        network_key: Target network key.

    Returns:
        Whether the switch completed and the resulting status.
    """
    if not is_known_network(network_key):
        raise HTTPException(status_code=404, detail=f"Unknown network: {network_key}")
    switched = await session.switch_network(network_key)
    return {"switched": switched, "status": session.status().model_dump()}


@app.post("/setup")
async def retry_setup() -> dict:
    """Re-run delegation setup on the current network."""
    try:
        await session.setup()
    except SetupError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return session.status().model_dump()


@app.post("/disconnect")
async def disconnect() -> dict:
    """Drop the delegation."""
    await session.disconnect()
    return {"status": session.status().model_dump()}


@app.websocket("/ws/game")
async def game_channel(websocket: WebSocket):
    """Message channel of the embedded game surface.

    Inbound: ``{"type": "spin", "bet": ..., "payline": ...}`` and ``{"type": "loaded"}``.
    Outbound: ``wallet``, ``spin:loading`` and ``spinResult`` messages.
    """
    await websocket.accept()

    async def send(message: dict) -> None:
        await websocket.send_json(message)

    session.add_listener(send)
    try:
        wallet = session.wallet_message()
        if wallet:
            await send(wallet)

        while True:
            message = await websocket.receive_json()
            if not isinstance(message, dict):
                continue
            kind = message.get("type")
            if kind == "spin":
                session.spawn_spin(message)
            elif kind == "loaded":
                wallet = session.wallet_message()
                if wallet:
                    await send(wallet)
            else:
                logger.debug(f"Ignoring game message of type {kind!r}")
    except WebSocketDisconnect:
        logger.info("Game surface disconnected")
    finally:
        session.remove_listener(send)


if __name__ == "__main__":
    import uvicorn

    validate_config_for_service("server")
    uvicorn.run(app, host=config.host, port=config.port)
