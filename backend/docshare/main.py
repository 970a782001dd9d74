import time
from typing import Optional

from fastapi import Body, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import OAuth2PasswordRequestForm
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from docshare import auth, credentials, schemas, shares
from docshare.config import settings
from docshare.credentials import Principal
from docshare.database import get_db, init_db
from docshare.errors import DocShareError
from docshare.logging import get_logger
from docshare.models import User
from docshare.references import build_share_url
from docshare.store import ShareStore, storage_errors

API_VERSION = "v1"

logger = get_logger(__name__)

app = FastAPI(title="DocShare API", version="1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup_event():
    init_db()


@app.exception_handler(DocShareError)
async def docshare_error_handler(request: Request, exc: DocShareError):
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message}, headers=headers)


def get_share_store(db: Session = Depends(get_db)) -> ShareStore:
    return ShareStore(db)


def resolve_base_url(request: Request) -> str:
    """Public origin used when building share links."""
    base_url = request.headers.get("X-Base-URL") or settings.BASE_URL
    if not base_url:
        proto = request.headers.get("X-Forwarded-Proto") or request.url.scheme
        host = request.headers.get("X-Forwarded-Host") or request.headers.get("host") or request.url.netloc
        base_url = f"{proto}://{host.rstrip('/')}"
    return base_url.rstrip("/")


@app.get("/api/health")
def health_check(db: Session = Depends(get_db)):
    with storage_errors(db, "count users"):
        user_count = db.query(User).count()
    return {"status": "ok", "ts": int(time.time()), "userCount": user_count, "version": API_VERSION}


@app.post("/api/auth/register", response_model=schemas.UserResponse)
def register(user: schemas.UserCreate, db: Session = Depends(get_db)):
    return auth.register_user(db, user.username, user.email, user.password)


@app.post("/api/auth/login", response_model=schemas.LoginResponse)
def login(form: schemas.LoginRequest, db: Session = Depends(get_db)):
    user, token = auth.login(db, form.username, form.password)
    return {"token": token, "user": user}


@app.post("/api/auth/token", response_model=schemas.AccessToken)
def issue_access_token(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    """Form login used by the interactive API docs."""
    _, token = auth.login(db, form_data.username, form_data.password)
    return {"access_token": token, "token_type": "bearer"}


@app.get("/api/auth/health")
def auth_health(principal: Principal = Depends(auth.get_current_principal)):
    return {"status": "ok", "userId": principal.user_id, "ts": int(time.time())}


@app.get("/api/user/me", response_model=schemas.UserResponse)
def read_users_me(current_user: User = Depends(auth.get_current_user)):
    return current_user


@app.post("/api/share/create", response_model=schemas.ShareCreateResponse)
def create_share(
    payload: schemas.ShareCreate,
    request: Request,
    principal: Principal = Depends(auth.get_current_principal),
    store: ShareStore = Depends(get_share_store),
):
    result = shares.publish_share(
        store,
        principal.user_id,
        payload.doc_id,
        payload.doc_title,
        payload.content,
        require_password=payload.require_password,
        password=payload.password,
        is_public=payload.is_public,
        expire_days=payload.expire_days,
        references=payload.references,
    )
    share = result.share
    return schemas.ShareCreateResponse(
        share_id=share.id,
        share_url=build_share_url(resolve_base_url(request), share.id),
        doc_id=share.doc_id,
        doc_title=share.doc_title,
        require_password=share.require_password,
        expire_at=share.expire_at,
        is_public=share.is_public,
        created_at=share.created_at,
        updated_at=share.updated_at,
        reused=result.reused,
    )


@app.get("/api/share/list", response_model=schemas.ShareListResponse)
def list_shares(
    request: Request,
    page: Optional[int] = None,
    size: Optional[int] = None,
    principal: Principal = Depends(auth.get_current_principal),
    store: ShareStore = Depends(get_share_store),
):
    listing = shares.list_shares(store, principal.user_id, page, size)
    base_url = resolve_base_url(request)
    items = [
        schemas.ShareItem(
            id=share.id,
            doc_id=share.doc_id,
            doc_title=share.doc_title,
            require_password=share.require_password,
            expire_at=share.expire_at,
            is_public=share.is_public,
            view_count=share.view_count,
            created_at=share.created_at,
            share_url=build_share_url(base_url, share.id),
        )
        for share in listing.items
    ]
    return schemas.ShareListResponse(items=items, page=listing.page, size=listing.size, total=listing.total)


@app.delete(
    "/api/share/batch",
    response_model=schemas.BatchDeleteResponse,
    response_model_exclude_none=True,
)
def delete_shares_batch(
    payload: Optional[schemas.BatchDeleteRequest] = Body(default=None),
    principal: Principal = Depends(auth.get_current_principal),
    store: ShareStore = Depends(get_share_store),
):
    share_ids = payload.share_ids if payload else []
    result = shares.batch_delete_shares(store, principal.user_id, share_ids)
    if result.deleted_all_count is not None:
        return schemas.BatchDeleteResponse(deleted_all_count=result.deleted_all_count)
    return schemas.BatchDeleteResponse(
        deleted=result.deleted,
        not_found=result.not_found,
        failed=result.failed or None,
    )


@app.delete("/api/share/{share_id}", response_model=schemas.MessageResponse)
def delete_share(
    share_id: str,
    principal: Principal = Depends(auth.get_current_principal),
    store: ShareStore = Depends(get_share_store),
):
    shares.delete_share(store, principal.user_id, share_id)
    return {"message": "Share deleted successfully"}


@app.get("/api/token/list", response_model=schemas.TokenListResponse)
def list_tokens(
    principal: Principal = Depends(auth.get_current_principal),
    db: Session = Depends(get_db),
):
    return {"items": credentials.list_tokens(db, principal.user_id)}


@app.post("/api/token/create", response_model=schemas.IssuedTokenResponse)
def create_token(
    payload: schemas.TokenCreate,
    principal: Principal = Depends(auth.get_current_principal),
    db: Session = Depends(get_db),
):
    return credentials.issue_token(db, principal.user_id, payload.name)


@app.post("/api/token/refresh/{token_id}", response_model=schemas.IssuedTokenResponse)
def refresh_token(
    token_id: str,
    principal: Principal = Depends(auth.get_current_principal),
    db: Session = Depends(get_db),
):
    return credentials.refresh_token(db, principal.user_id, token_id)


@app.post("/api/token/revoke/{token_id}", response_model=schemas.MessageResponse)
def revoke_token(
    token_id: str,
    principal: Principal = Depends(auth.get_current_principal),
    db: Session = Depends(get_db),
):
    credentials.revoke_token(db, principal.user_id, token_id)
    return {"message": "Token revoked successfully"}


@app.get("/api/s/{share_id}", response_model=schemas.ShareViewResponse)
def view_share(
    share_id: str,
    request: Request,
    password: Optional[str] = None,
    store: ShareStore = Depends(get_share_store),
):
    return shares.view_share(store, share_id, password, resolve_base_url(request))
