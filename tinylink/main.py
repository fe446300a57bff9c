import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from tinylink import __version__, auth, codes, crud, database, models, qr_utils, schemas
from tinylink.dependencies import get_store
from tinylink.errors import RETRYABLE, TinyLinkError
from tinylink.records import User
from tinylink.store import LinkStore

load_dotenv(Path(__file__).parent.parent / ".env")

ENVIRONMENT = os.getenv("ENVIRONMENT", "dev")

# --- Logging ---
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
)
logger = logging.getLogger("tinylink")

# --- DB tables ---
models.Base.metadata.create_all(bind=database.engine)

app = FastAPI(
    title="TinyLink",
    description="Self-hosted URL shortener with click analytics and QR codes.",
    version=__version__,
)

# --- CORS (allow frontend dev servers, etc.) ---
origins = ["*"] if ENVIRONMENT == "dev" else [
    os.getenv("PUBLIC_BASE_URL", "http://localhost:8000"),
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TinyLinkError)
async def handle_tinylink_error(request: Request, exc: TinyLinkError):
    headers = {"Retry-After": "1"} if isinstance(exc, RETRYABLE) else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=headers)


def public_base_url(request: Request) -> str:
    return os.getenv("PUBLIC_BASE_URL") or str(request.base_url).rstrip("/")


# Health check (useful for uptime monitors & load balancers)
@app.get("/health", include_in_schema=False)
def health():
    return {"status": "ok", "env": ENVIRONMENT}


# ---------- Users ----------
@app.post("/api/users", response_model=schemas.UserOut, status_code=status.HTTP_201_CREATED)
def register(
    user_in: schemas.UserRegister,
    response: Response,
    identity: str = Depends(auth.get_identity),
    store: LinkStore = Depends(get_store),
):
    user, created = crud.register_user(store, identity, user_in.display_name, user_in.email)
    if not created:
        response.status_code = status.HTTP_200_OK
    return user


@app.get("/api/users/me", response_model=schemas.UserOut)
def me(user: User = Depends(auth.get_current_user)):
    return user


# ---------- Links ----------
@app.post("/api/links", response_model=schemas.LinkOut, status_code=status.HTTP_201_CREATED)
def create_link(
    link_in: schemas.LinkCreate,
    store: LinkStore = Depends(get_store),
    user: User | None = Depends(auth.get_optional_user),
):
    return crud.allocate(store, user, link_in.destination, link_in.code, link_in.active)


@app.get("/api/links", response_model=schemas.PaginatedLinks)
def list_links(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    store: LinkStore = Depends(get_store),
    user: User = Depends(auth.get_current_user),
):
    items, total = crud.list_links(store, user, skip=skip, limit=limit)
    return {"items": items, "total": total, "skip": skip, "limit": limit}


@app.get("/api/links/{link_id}", response_model=schemas.LinkOut)
def get_link(link_id: int, store: LinkStore = Depends(get_store), user: User = Depends(auth.get_current_user)):
    return crud.get_owned_link(store, user, link_id)


@app.api_route("/api/links/{link_id}", methods=["PUT", "PATCH"], response_model=schemas.LinkOut)
def update_link(
    link_id: int,
    link_in: schemas.LinkUpdate,
    store: LinkStore = Depends(get_store),
    user: User = Depends(auth.get_current_user),
):
    return crud.update_link(store, user, link_id, link_in.destination, link_in.code, link_in.active)


@app.delete("/api/links/{link_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_link(link_id: int, store: LinkStore = Depends(get_store), user: User = Depends(auth.get_current_user)):
    crud.delete_link(store, user, link_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/api/links/{link_id}/qrcode")
def qr_code(
    link_id: int,
    request: Request,
    format: str = Query("svg"),
    size: int = Query(200, ge=64, le=1024),
    store: LinkStore = Depends(get_store),
    user: User = Depends(auth.get_current_user),
):
    if format not in qr_utils.FORMATS:
        raise HTTPException(status_code=400, detail=f"Invalid format. Supported formats: {', '.join(qr_utils.FORMATS)}")
    link = crud.get_owned_link(store, user, link_id)
    short_url = f"{public_base_url(request)}/{link.code}"
    if format == "png":
        return Response(content=qr_utils.generate_qr_png(short_url, size), media_type="image/png")
    if format == "svg":
        return Response(content=qr_utils.generate_qr_svg(short_url, size), media_type="image/svg+xml")
    return schemas.QRDataURL(data_url=qr_utils.generate_qr_data_url(short_url, size))


@app.get("/api/stats", response_model=schemas.StatsOut)
def get_stats(store: LinkStore = Depends(get_store), user: User = Depends(auth.get_current_user)):
    return crud.stats(store, user)


@app.get("/api/resolve/{code}", response_model=schemas.Resolved)
def resolve(code: str, store: LinkStore = Depends(get_store)):
    return {"destination": crud.resolve(store, code)}


# Pretty redirect /{code}; must stay the last route
@app.get("/{code}", include_in_schema=False)
def redirect_pretty(code: str, store: LinkStore = Depends(get_store)):
    if codes.is_reserved(code) or len(code) > codes.MAX_CODE_LENGTH or not codes.CODE_RE.fullmatch(code):
        raise HTTPException(status_code=404, detail="Not found")
    return RedirectResponse(url=crud.resolve(store, code), status_code=307)
