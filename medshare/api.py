import time
import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware

from medshare.auth import generate_auth_challenge, logout, session_address, verify_auth_signature
from medshare.constants import EMERGENCY_ESCROW_KEY_FILE, LEDGER_STATE_FILE, LOG_LEVEL
from medshare.crypto.key_manager import EmergencyKeyEscrow
from medshare.errors import (
    AUTHORIZATION, CRYPTOGRAPHIC, NOT_FOUND, STATE_CONFLICT, UNAVAILABLE, VALIDATION,
    MedShareError, Result,
)
from medshare.ipfs_helper import BlobStore, LocalBlobStore
from medshare.ledger import Ledger
from medshare.models import (
    ApproveRequest, AuthorityRequest, BatchRequestBody, CallerRequest, EmergencyRequest,
    EndEmergencyRequest, PermissionRequestBody, PublicKeyRequest, RecordPutRequest,
    RecordStatusRequest, RegisterRequest, RevokeRequest,
)
from medshare.store import InMemoryStore, JsonFileStore

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

STATUS_BY_CATEGORY = {
    AUTHORIZATION: 403,
    STATE_CONFLICT: 409,
    CRYPTOGRAPHIC: 422,
    NOT_FOUND: 404,
    VALIDATION: 400,
    UNAVAILABLE: 503,
}


# Standard API response helpers
def success_response(data=None, message=None):
    """
    Create a standardized success response.

    Args:
        data: Optional data to include in the response
        message: Optional message to include in the response

    Returns:
        dict: A standardized success response
    """
    response = {"status": "success"}

    if data is not None:
        response["data"] = jsonable_encoder(data)

    if message is not None:
        response["message"] = message

    return response


def error_response(message, status_code=400, code=None):
    """
    Create a standardized error response and raise an HTTPException.

    Raises:
        HTTPException: With the specified status code and error details
    """
    detail = {"status": "error", "error": message}
    if code is not None:
        detail["code"] = code
    raise HTTPException(status_code=status_code, detail=detail)


def raise_for_error(error: MedShareError):
    error_response(error.message, STATUS_BY_CATEGORY.get(error.category, 400), code=error.code)


def result_response(result: Result, message=None):
    """Turn a ledger Result into a success envelope or an HTTP error"""
    if not result.ok:
        raise_for_error(result.error)
    return success_response(data=result.value, message=message)


def bearer_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    """Session token from an `Authorization: Bearer <token>` header"""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def require_session(wallet_address: str, token: Optional[str]) -> str:
    """The caller address, once the session token is shown to belong to it"""
    if not wallet_address:
        error_response("wallet_address is required", 400)
    address = session_address(token)
    if address is None:
        error_response("A valid session token is required", 401)
    if address != wallet_address.lower():
        error_response(f"Session does not belong to {wallet_address}", 403)
    return wallet_address


def default_ledger() -> Ledger:
    store = JsonFileStore(LEDGER_STATE_FILE) if LEDGER_STATE_FILE else InMemoryStore()
    escrow = EmergencyKeyEscrow.from_file(EMERGENCY_ESCROW_KEY_FILE) if EMERGENCY_ESCROW_KEY_FILE else None
    if escrow is None:
        logger.warning("EMERGENCY_ESCROW_KEY_FILE is not set, emergency access is disabled")
    return Ledger(store=store, emergency_escrow=escrow)


def create_app(ledger: Optional[Ledger] = None, blob_store: Optional[BlobStore] = None) -> FastAPI:
    ledger = ledger or default_ledger()
    blob_store = blob_store or LocalBlobStore()

    app = FastAPI(title="MedShare Record Sharing API")
    app.state.ledger = ledger
    app.state.blob_store = blob_store

    # Enable CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    @app.get("/api/health")
    async def health_check():
        return success_response(
            data={"timestamp": int(time.time())},
            message="Service is healthy"
        )

    # Authentication endpoints
    @app.post("/api/auth/challenge")
    async def get_auth_challenge(request: Request):
        body = await request.json()
        wallet_address = body.get("wallet_address")

        if not wallet_address:
            error_response("wallet_address is required", 400)

        challenge = generate_auth_challenge(wallet_address)
        return success_response(
            data={
                "challenge": challenge,
                "wallet_address": wallet_address
            }
        )

    @app.post("/api/auth/verify")
    async def verify_auth(request: Request):
        body = await request.json()
        wallet_address = body.get("wallet_address")
        signature = body.get("signature")

        if not wallet_address:
            error_response("wallet_address is required", 400)

        if not signature:
            error_response("signature is required", 400)

        token = verify_auth_signature(wallet_address, signature)
        if token is None:
            error_response("Invalid signature", 401)

        return success_response(
            data={
                "authenticated": True,
                "wallet_address": wallet_address,
                "token": token,
            }
        )

    @app.post("/api/auth/logout")
    async def logout_user(token: Optional[str] = Depends(bearer_token)):
        if not token:
            error_response("A session token is required", 401)

        if logout(token):
            return success_response(message="Logged out successfully")
        return success_response(message="Not logged in")

    @app.get("/api/auth/status")
    async def auth_status(token: Optional[str] = Depends(bearer_token)):
        address = session_address(token)
        return success_response(
            data={
                "authenticated": address is not None,
                "wallet_address": address,
            }
        )

    # Identity registry
    @app.post("/api/users/register")
    def register_user(body: RegisterRequest, token: Optional[str] = Depends(bearer_token)):
        caller = require_session(body.wallet_address, token)
        return result_response(ledger.register(caller, body.role, body.public_key), message="Registered")

    @app.post("/api/users/public-key")
    def set_public_key(body: PublicKeyRequest, token: Optional[str] = Depends(bearer_token)):
        caller = require_session(body.wallet_address, token)
        return result_response(ledger.set_public_key(caller, body.public_key))

    @app.post("/api/users/verify")
    def verify_user(body: AuthorityRequest, token: Optional[str] = Depends(bearer_token)):
        caller = require_session(body.wallet_address, token)
        return result_response(ledger.verify(caller, body.address))

    @app.post("/api/users/deactivate")
    def deactivate_user(body: AuthorityRequest, token: Optional[str] = Depends(bearer_token)):
        caller = require_session(body.wallet_address, token)
        return result_response(ledger.deactivate(caller, body.address))

    @app.post("/api/users/emergency-provider")
    def designate_emergency_provider(body: AuthorityRequest, token: Optional[str] = Depends(bearer_token)):
        caller = require_session(body.wallet_address, token)
        return result_response(ledger.designate_emergency_provider(caller, body.address))

    @app.get("/api/users/{address}")
    def get_user(address: str):
        return result_response(ledger.get_user(address))

    @app.get("/api/users/{address}/check")
    def check_user(address: str):
        result = ledger.check_user(address)
        if not result.ok:
            raise_for_error(result.error)
        verified, role = result.value
        return success_response(data={"verified": verified, "role": role})

    @app.get("/api/users/{address}/public-key")
    def get_public_key(address: str):
        return result_response(ledger.get_public_key(address))

    @app.get("/api/users/{address}/balance")
    def balance_of(address: str):
        return result_response(ledger.balance_of(address))

    # Blobs
    @app.post("/api/blobs")
    async def put_blob(request: Request, wallet_address: str, token: Optional[str] = Depends(bearer_token)):
        require_session(wallet_address, token)
        try:
            content_ref = blob_store.put(await request.body())
        except MedShareError as e:
            raise_for_error(e)
        return success_response(data={"content_ref": content_ref})

    @app.get("/api/blobs/{content_ref}")
    def get_blob(content_ref: str):
        try:
            data = blob_store.get(content_ref)
        except MedShareError as e:
            raise_for_error(e)
        return Response(content=data, media_type="application/octet-stream")

    # Record catalog
    @app.post("/api/records")
    def put_record(body: RecordPutRequest, token: Optional[str] = Depends(bearer_token)):
        caller = require_session(body.wallet_address, token)
        return result_response(ledger.put_record(
            caller, body.owner, body.data_type, body.content_ref,
            body.owner_wrapped_key, body.escrow_wrapped_key,
        ))

    @app.get("/api/records")
    def list_records(owner: Optional[str] = None, uploader: Optional[str] = None):
        if owner:
            result = ledger.list_by_owner(owner)
        elif uploader:
            result = ledger.list_by_uploader(uploader)
        else:
            error_response("owner or uploader is required", 400)
        if not result.ok:
            raise_for_error(result.error)
        return success_response(data=list(result.value))

    @app.get("/api/records/{record_id}")
    def get_record(record_id: str):
        return result_response(ledger.get_record(record_id))

    @app.post("/api/records/{record_id}/status")
    def advance_record_status(record_id: str, body: RecordStatusRequest, token: Optional[str] = Depends(bearer_token)):
        caller = require_session(body.wallet_address, token)
        return result_response(ledger.advance_record_status(caller, record_id, body.status))

    @app.post("/api/records/{record_id}/invalidate")
    def invalidate_record(record_id: str, body: CallerRequest, token: Optional[str] = Depends(bearer_token)):
        caller = require_session(body.wallet_address, token)
        return result_response(ledger.invalidate_record(caller, record_id))

    # Permissions
    @app.post("/api/permissions/request")
    def request_permission(body: PermissionRequestBody, token: Optional[str] = Depends(bearer_token)):
        caller = require_session(body.wallet_address, token)
        return result_response(ledger.request_permission(
            caller, body.owner, body.record_ref, body.kind, body.incentive_amount, body.value,
        ))

    @app.get("/api/permissions")
    def requests_by_requester(requester: str):
        return result_response(ledger.requests_by_requester(requester))

    @app.get("/api/permissions/{request_id}")
    def get_permission_request(request_id: str):
        return result_response(ledger.get_permission_request(request_id))

    @app.post("/api/permissions/{request_id}/approve")
    def approve_request(request_id: str, body: ApproveRequest, token: Optional[str] = Depends(bearer_token)):
        caller = require_session(body.wallet_address, token)
        return result_response(ledger.approve(caller, request_id, body.owner_private_key))

    @app.post("/api/permissions/{request_id}/reject")
    def reject_request(request_id: str, body: CallerRequest, token: Optional[str] = Depends(bearer_token)):
        caller = require_session(body.wallet_address, token)
        return result_response(ledger.reject(caller, request_id))

    @app.post("/api/permissions/{request_id}/expire")
    def expire_request(request_id: str, body: CallerRequest, token: Optional[str] = Depends(bearer_token)):
        caller = require_session(body.wallet_address, token)
        return result_response(ledger.expire(caller, request_id))

    @app.post("/api/permissions/revoke")
    def revoke_access(body: RevokeRequest, token: Optional[str] = Depends(bearer_token)):
        caller = require_session(body.wallet_address, token)
        return result_response(ledger.revoke(caller, body.grantee, body.record_ref))

    @app.get("/api/patient/requests")
    def pending_requests(wallet_address: str):
        return result_response(ledger.pending_requests_for_owner(wallet_address))

    # Access
    @app.get("/api/access/check")
    def check_access(grantee: str, record_ref: str):
        return result_response(ledger.check_access(grantee, record_ref))

    @app.get("/api/access/key")
    def get_wrapped_key(wallet_address: str, record_ref: str, token: Optional[str] = Depends(bearer_token)):
        caller = require_session(wallet_address, token)
        return result_response(ledger.get_wrapped_key(caller, record_ref))

    # Emergency
    @app.post("/api/emergency/access")
    def emergency_access(body: EmergencyRequest, token: Optional[str] = Depends(bearer_token)):
        caller = require_session(body.wallet_address, token)
        return result_response(ledger.emergency_access(caller, body.patient))

    @app.post("/api/emergency/end")
    def end_emergency_access(body: EndEmergencyRequest, token: Optional[str] = Depends(bearer_token)):
        caller = require_session(body.wallet_address, token)
        return result_response(ledger.end_emergency_access(caller, body.responder, body.patient))

    @app.get("/api/emergency/check")
    def check_emergency_access(responder: str, patient: str):
        return result_response(ledger.check_emergency_access(responder, patient))

    @app.get("/api/emergency/log")
    def emergency_log():
        return result_response(ledger.emergency_log())

    # Batch access
    @app.post("/api/batch/request")
    def request_batch_access(body: BatchRequestBody, token: Optional[str] = Depends(bearer_token)):
        caller = require_session(body.wallet_address, token)
        return result_response(ledger.request_batch_access(
            caller, body.owner, body.kind, body.incentive_amount, body.value,
        ))

    @app.post("/api/batch/{request_id}/approve")
    def approve_batch_access(request_id: str, body: ApproveRequest, token: Optional[str] = Depends(bearer_token)):
        caller = require_session(body.wallet_address, token)
        return result_response(ledger.approve_batch_access(caller, request_id, body.owner_private_key))

    # Audit
    @app.get("/api/audit")
    def audit():
        events = ledger.audit_log().unwrap()
        return success_response(data={
            "root": ledger.audit_root().unwrap(),
            "valid": ledger.verify_audit_chain().unwrap(),
            "events": events,
        })

    @app.get("/api/audit/proof/{seq}")
    def audit_proof(seq: int):
        return result_response(ledger.audit_proof(seq))

    return app


app = create_app()
