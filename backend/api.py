import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from backend.config import settings
from backend.schemas import (
    CredentialRequest,
    CustomCredentialRequest,
    LoginRequest,
    RegisterOrganizationRequest,
    RegisterUserRequest,
    SelectiveDisclosureRequest,
    VerifyRequest,
)
from did_wallet import Unauthorized, WalletError, WalletService
from did_wallet.identity import SessionManager
from did_wallet.models import Credential, Organization, User

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    "validation_error": 400,
    "no_identity": 400,
    "malformed_credential": 400,
    "unauthorized": 401,
    "credential_not_found": 404,
    "not_found": 404,
    "already_revoked": 409,
}

wallet_service: Optional[WalletService] = None
bearer = HTTPBearer(auto_error=False)


def build_service() -> WalletService:
    return WalletService(
        sessions=SessionManager(settings.SECRET_KEY, settings.SESSION_TTL_SECONDS),
        public_base_url=settings.PUBLIC_BASE_URL,
        government_id_validity_days=settings.GOVERNMENT_ID_VALIDITY_DAYS,
        disclosure_requires_owner=settings.DISCLOSURE_REQUIRES_OWNER,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    global wallet_service
    logger.info("Starting %s...", settings.SERVICE_NAME)
    if not settings.SECRET_KEY:
        logger.warning("WALLET_SECRET_KEY is not set; sessions end when the process exits")

    wallet_service = build_service()
    admin = wallet_service.seed_default_admin(
        settings.DEFAULT_ADMIN_EMAIL,
        settings.DEFAULT_ADMIN_PASSWORD,
        settings.DEFAULT_ADMIN_NAME,
    )
    if admin is None:
        logger.info("No default admin configured")

    yield
    logger.info("Shutting down...")
    wallet_service = None


app = FastAPI(title=settings.SERVICE_NAME, version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WalletError)
async def wallet_error_handler(request: Request, exc: WalletError):
    return JSONResponse(status_code=STATUS_BY_KIND.get(exc.kind, 400), content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        location = ".".join(str(part) for part in errors[0].get("loc", ())[1:])
        message = f"{location}: {errors[0].get('msg')}" if location else errors[0].get("msg", message)
    return JSONResponse(status_code=400, content={"kind": "validation_error", "message": message})


# ============================================================
# DEPENDENCIES
# ============================================================

def get_service() -> WalletService:
    if wallet_service is None:
        raise HTTPException(status_code=503, detail="Wallet service not initialized")
    return wallet_service


def _token(credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    return credentials.credentials if credentials else None


def require_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    service: WalletService = Depends(get_service),
) -> User:
    return service.current_user(_token(credentials))


def optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    service: WalletService = Depends(get_service),
) -> Optional[User]:
    if credentials is None:
        return None
    try:
        return service.current_user(credentials.credentials)
    except Unauthorized:
        return None


def require_organization(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    service: WalletService = Depends(get_service),
) -> Organization:
    return service.current_organization(_token(credentials))


def credential_view(service: WalletService, credential: Credential) -> Dict[str, Any]:
    data = credential.to_dict()
    data["shareUrl"] = service.share_link(credential)
    return data


# ============================================================
# USER AUTHENTICATION
# ============================================================

@app.post("/api/auth/register")
async def register_user(body: RegisterUserRequest, service: WalletService = Depends(get_service)):
    user, token = service.register_user(body.username, body.email, body.password)
    return {"user": user.to_dict(), "token": token}


@app.post("/api/auth/login")
async def login_user(body: LoginRequest, service: WalletService = Depends(get_service)):
    user, token = service.login_user(body.email, body.password)
    return {"user": user.to_dict(), "token": token}


@app.post("/api/auth/logout")
async def logout_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    service: WalletService = Depends(get_service),
):
    if credentials is not None:
        service.logout(credentials.credentials)
    return {"message": "Logged out successfully"}


@app.get("/api/auth/me")
async def get_me(user: User = Depends(require_user)):
    return user.to_dict()


@app.delete("/api/auth/me")
async def delete_me(user: User = Depends(require_user), service: WalletService = Depends(get_service)):
    """Delete the account together with its DIDs, credentials and history"""
    service.delete_account(user.id)
    return {"message": "Account deleted"}


# ============================================================
# ADMIN (VERIFIER ORGANIZATIONS)
# ============================================================

@app.post("/api/admin/register")
async def register_organization(
    body: RegisterOrganizationRequest, service: WalletService = Depends(get_service)
):
    organization, token = service.register_organization(
        body.name, body.email, body.password, role=body.role
    )
    return {"organization": organization.to_dict(), "token": token}


@app.post("/api/admin/login")
async def login_organization(body: LoginRequest, service: WalletService = Depends(get_service)):
    organization, token = service.login_organization(body.email, body.password)
    return {"organization": organization.to_dict(), "token": token}


@app.post("/api/admin/logout")
async def logout_organization(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    service: WalletService = Depends(get_service),
):
    if credentials is not None:
        service.logout(credentials.credentials)
    return {"message": "Logged out successfully"}


@app.get("/api/admin/me")
async def get_organization(organization: Organization = Depends(require_organization)):
    return organization.to_dict()


@app.post("/api/admin/verify")
async def admin_verify(
    body: VerifyRequest,
    organization: Organization = Depends(require_organization),
    service: WalletService = Depends(get_service),
):
    """
    Verify a credential on behalf of a verifier organization.

    Unlike /api/verify, a credential whose issuing DID cannot be resolved
    never passes the signature check here.
    """
    result = service.verify_admin(body.credential_data, organization.id)
    data = result.to_dict()
    data["verifiedBy"] = organization.name
    return data


# ============================================================
# DID ENDPOINTS
# ============================================================

@app.get("/api/did/current")
async def get_current_did(user: User = Depends(require_user), service: WalletService = Depends(get_service)):
    return service.current_identity(user.id).to_dict()


@app.post("/api/did/create")
async def create_did(user: User = Depends(require_user), service: WalletService = Depends(get_service)):
    return service.create_identity(user.id).to_dict()


@app.get("/api/did")
async def list_dids(user: User = Depends(require_user), service: WalletService = Depends(get_service)):
    current = service.did_manager.get_current_did(user.id)
    return [
        dict(did.to_dict(), isCurrent=current is not None and did.id == current.id)
        for did in service.list_identities(user.id)
    ]


@app.post("/api/did/{did_id}/current")
async def switch_did(
    did_id: str, user: User = Depends(require_user), service: WalletService = Depends(get_service)
):
    return service.switch_identity(user.id, did_id).to_dict()


@app.get("/api/did/{did_id}/private-key")
async def reveal_private_key(
    did_id: str, user: User = Depends(require_user), service: WalletService = Depends(get_service)
):
    return {"didId": did_id, "privateKey": service.reveal_private_key(user.id, did_id)}


# ============================================================
# CREDENTIAL ENDPOINTS
# ============================================================

@app.get("/api/credentials")
async def list_credentials(user: User = Depends(require_user), service: WalletService = Depends(get_service)):
    return [credential_view(service, c) for c in service.list_credentials(user.id)]


@app.get("/api/credentials/{credential_id}")
async def get_credential(
    credential_id: str, user: User = Depends(require_user), service: WalletService = Depends(get_service)
):
    return credential_view(service, service.get_credential(user.id, credential_id))


@app.post("/api/credentials/request")
async def request_credential(
    body: CredentialRequest, user: User = Depends(require_user), service: WalletService = Depends(get_service)
):
    """Issue a templated demo credential signed by the caller's current DID"""
    credential = service.issue_credential(
        user.id,
        body.type,
        body.title,
        body.issuer,
        issued_date=body.issued_date,
        expires_date=body.expires_date,
    )
    return credential_view(service, credential)


@app.post("/api/credentials/custom")
async def create_custom_credential(
    body: CustomCredentialRequest,
    user: User = Depends(require_user),
    service: WalletService = Depends(get_service),
):
    credential = service.issue_custom_credential(
        user.id,
        body.type,
        body.title,
        body.issuer,
        body.credential_data,
        issued_date=body.issued_date,
        expires_date=body.expires_date,
        image_url=body.image_url,
        document_url=body.document_url,
    )
    return credential_view(service, credential)


@app.patch("/api/credentials/{credential_id}/revoke")
async def revoke_credential(
    credential_id: str, user: User = Depends(require_user), service: WalletService = Depends(get_service)
):
    return credential_view(service, service.revoke_credential(user.id, credential_id))


@app.get("/api/credentials/{credential_id}/verifications")
async def list_verifications(
    credential_id: str, user: User = Depends(require_user), service: WalletService = Depends(get_service)
):
    return [v.to_dict() for v in service.list_verifications(user.id, credential_id)]


@app.post("/api/credentials/selective-disclosure")
async def selective_disclosure(
    body: SelectiveDisclosureRequest,
    user: Optional[User] = Depends(optional_user),
    service: WalletService = Depends(get_service),
):
    result = service.disclose(body.credential_id, body.fields, caller_id=user.id if user else None)
    return result.to_dict()


# ============================================================
# VERIFICATION ENDPOINTS
# ============================================================

@app.post("/api/verify")
async def verify_credential(
    body: VerifyRequest,
    user: Optional[User] = Depends(optional_user),
    service: WalletService = Depends(get_service),
):
    """
    Verify a share link, share token, credential id or credential JSON.

    Open to anyone; signed-in callers are recorded under their current DID.
    """
    result = service.verify_self_serve(body.credential_data, user_id=user.id if user else None)
    return result.to_dict()


@app.get("/api/verify/{share_token}")
async def verify_share_token(share_token: str, service: WalletService = Depends(get_service)):
    return service.verify_share_token(share_token).to_share_summary()


# ============================================================
# ACTIVITY, CONTENT, TEMPLATES
# ============================================================

@app.get("/api/activities")
async def list_activities(user: User = Depends(require_user), service: WalletService = Depends(get_service)):
    return [a.to_dict() for a in service.list_activities(user.id)]


@app.get("/api/ipfs/{cid}")
async def get_content(cid: str, service: WalletService = Depends(get_service)):
    return service.get_content(cid).to_dict()


@app.get("/api/templates")
async def list_templates(service: WalletService = Depends(get_service)):
    return [t.to_dict() for t in service.list_templates()]


@app.get("/api/info")
async def get_info(service: WalletService = Depends(get_service)):
    """Service name and record counts"""
    return {"service": settings.SERVICE_NAME, "statistics": service.get_statistics()}


if __name__ == "__main__":
    uvicorn.run("backend.api:app", host=settings.HOST, port=settings.PORT)
