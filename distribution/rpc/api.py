from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel
from typing import Dict, Optional, Union
from protocol.types.admin import AdminRequest
from protocol.types.common import ErrorCode, PoolKind
from protocol.config.params import NetworkConfig, CURRENT_NETWORK
from ..core.ledger import DistributionLedger
from ..core.errors import DistributionError
import logging

logger = logging.getLogger(__name__)

app = FastAPI(title="WeFi Distribution RPC")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
ledger: Optional[DistributionLedger] = None
network: NetworkConfig = CURRENT_NETWORK
# caller:request digest -> signed timestamp, for admin requests inside the freshness window
seen_admin_requests: Dict[str, int] = {}

class ClaimRequest(BaseModel):
    pool: Union[int, str]
    amount: int
    valid_until: int
    receiver: str
    signature: str
    nonce: int = 0
    claimant: Optional[str] = None

def _require_ledger() -> DistributionLedger:
    if not ledger:
        raise HTTPException(status_code=503, detail="Node not initialized")
    return ledger

def _parse_pool(pool: str) -> PoolKind:
    try:
        return PoolKind.parse(pool)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown pool: {pool}")

def _error_response(e: DistributionError) -> HTTPException:
    status = 403 if e.code == ErrorCode.UNAUTHORIZED_CALLER else 400
    return HTTPException(status_code=status, detail={"error": e.code.value, "message": e.message})

def _authenticate(request: AdminRequest, action: str) -> str:
    """Recovers the admin caller from a signed request, rejecting stale or replayed ones."""
    led = _require_ledger()
    if request.action != action:
        raise HTTPException(status_code=400, detail=f"Request signed for '{request.action}', not '{action}'")

    now = led.clock()
    if abs(now - request.timestamp) > network.admin_request_ttl_sec:
        raise HTTPException(status_code=401, detail="Admin request expired")

    caller = request.recover_caller(network.chain_id, led.address, prefix=network.bech32_prefix_acc)
    if caller is None:
        raise HTTPException(status_code=401, detail="Invalid admin signature")

    for key, signed_at in list(seen_admin_requests.items()):
        if now - signed_at > network.admin_request_ttl_sec:
            del seen_admin_requests[key]

    key = f"{caller}:{request.digest(network.chain_id, led.address).hex()}"
    if key in seen_admin_requests:
        raise HTTPException(status_code=409, detail="Admin request already processed")
    seen_admin_requests[key] = request.timestamp
    return caller

@app.get("/")
async def root():
    return {"message": "WeFi Distribution RPC", "version": "1.0"}

@app.get("/status")
async def get_status():
    led = _require_ledger()
    return {
        "network": network.network_id,
        "chain_id": network.chain_id,
        "ledger_address": led.address,
        "verifier_address": led.authorizer.verifier_address,
        "now": led.clock(),
        "launch_timestamp": led.launch_timestamp,
        "paused": led.access.is_paused(),
        "balance": str(led.token.balance_of(led.address)),
        "migration": led.migration.model_dump(),
    }

@app.get("/pools")
async def get_pools():
    led = _require_ledger()
    return {
        "pools": [led.pool_info(pool) for pool in PoolKind],
        "mining_schedule": [{"rate": str(rate), "duration": duration} for rate, duration in led.mining_schedule],
        "vesting_duration": led.vesting_duration,
    }

@app.get("/pool/{pool}")
async def get_pool(pool: str):
    led = _require_ledger()
    return led.pool_info(_parse_pool(pool))

@app.get("/unlocked/mining")
async def get_unlocked_mining():
    led = _require_ledger()
    return {"pool": "mining", "unlocked": str(led.unlocked_mining())}

@app.get("/unlocked/referral")
async def get_unlocked_referral():
    led = _require_ledger()
    return {"pool": "referral", "unlocked": str(led.unlocked_referral())}

@app.get("/migration")
async def get_migration():
    led = _require_ledger()
    return led.migration.model_dump()

@app.get("/claim/{claim_key}")
async def get_claim(claim_key: str):
    led = _require_ledger()
    record = led.get_claim(claim_key)
    if not record:
        raise HTTPException(status_code=404, detail="Claim not found")
    return record.model_dump(mode="json")

@app.get("/claims/{receiver}")
async def get_claims(receiver: str):
    led = _require_ledger()
    records = led.claims_for(receiver)
    return {
        "receiver": receiver,
        "claims": [r.model_dump(mode="json") for r in records],
        "total_claimed": str(sum(r.amount for r in records)),
    }

@app.post("/claim")
async def submit_claim(req: ClaimRequest):
    led = _require_ledger()
    result = led.claim(
        pool=req.pool,
        amount=req.amount,
        valid_until=req.valid_until,
        receiver=req.receiver,
        signature=req.signature,
        caller=req.claimant,
        nonce=req.nonce,
    )
    if not result.ok:
        raise HTTPException(status_code=400, detail=result.to_dict())
    return result.to_dict()

@app.post("/admin/start_migration")
async def admin_start_migration(request: AdminRequest):
    led = _require_ledger()
    caller = _authenticate(request, "start_migration")
    try:
        target = int(request.params["target_timestamp"])
    except (KeyError, TypeError, ValueError):
        raise HTTPException(status_code=400, detail="params.target_timestamp is required")
    try:
        lock = led.start_migration(caller, target)
    except DistributionError as e:
        raise _error_response(e)
    return lock.model_dump()

@app.post("/admin/sweep")
async def admin_sweep(request: AdminRequest):
    led = _require_ledger()
    caller = _authenticate(request, "sweep")
    destination = request.params.get("destination")
    if not destination:
        raise HTTPException(status_code=400, detail="params.destination is required")
    try:
        result = led.sweep_remaining(caller, destination)
    except DistributionError as e:
        raise _error_response(e)
    return result.to_dict()

@app.post("/admin/pause")
async def admin_pause(request: AdminRequest):
    led = _require_ledger()
    caller = _authenticate(request, "pause")
    try:
        led.pause(caller)
    except DistributionError as e:
        raise _error_response(e)
    return {"paused": True}

@app.post("/admin/unpause")
async def admin_unpause(request: AdminRequest):
    led = _require_ledger()
    caller = _authenticate(request, "unpause")
    try:
        led.unpause(caller)
    except DistributionError as e:
        raise _error_response(e)
    return {"paused": False}

@app.get("/metrics")
async def get_metrics():
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    led = _require_ledger()
    from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
    from ..observability.metrics import metrics_registry, update_metrics

    update_metrics(led)
    return Response(
        content=generate_latest(metrics_registry),
        media_type=CONTENT_TYPE_LATEST
    )

def start_rpc_server(ledger_instance: DistributionLedger, network_config: NetworkConfig = CURRENT_NETWORK,
                     host: str = "0.0.0.0", port: int = 8000):
    global ledger, network
    ledger = ledger_instance
    network = network_config
    import uvicorn
    uvicorn.run(app, host=host, port=port, log_level="info")
