from __future__ import annotations

import logging
import os
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Callable, List, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
import uvicorn

from storefront.config import Settings, settings
from storefront.constants import ADMINS
from storefront.db.sqlite import SqliteStore, StoreError
from storefront.services import catalog, pricing
from storefront.services.admin_auth import AdminSession, AdminSessionGuard, GateDecision, create_admin, normalize_email
from storefront.services.cart import CartStore
from storefront.services.client_storage import ClientStorage
from storefront.services.coupons import CouponValidator, utc_now
from storefront.services.models import CustomerInfo
from storefront.services.storage import ObjectStorage
from storefront.utils.formatters import discount_label, money

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
TEMPLATES_DIR = BASE_DIR / "templates"
STATIC_DIR = BASE_DIR / "static"

SID_COOKIE = "sid"
STORE_DOWN = "The store is unavailable right now. Please try again."

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
router = APIRouter()


class GateBlocked(Exception):
    def __init__(self, decision: GateDecision) -> None:
        super().__init__(decision.action)
        self.decision = decision


# ---------------- per-request helpers ----------------

def _cfg(request: Request) -> Settings:
    return request.app.state.cfg


def _store(request: Request) -> SqliteStore:
    return request.app.state.store


def _objects(request: Request) -> ObjectStorage:
    return request.app.state.objects


def _storage(request: Request) -> ClientStorage:
    return ClientStorage(_store(request), f"web:{request.state.sid}")


def _cart(request: Request, notes: Optional[List[str]] = None) -> CartStore:
    notify = notes.append if notes is not None else (lambda _: None)
    return CartStore(_storage(request), notify=notify, cfg=_cfg(request))


def _validator(request: Request) -> CouponValidator:
    return CouponValidator(_store(request), now=request.app.state.clock)


def _guard(request: Request) -> AdminSessionGuard:
    cfg = _cfg(request)
    return AdminSessionGuard(
        _store(request),
        _storage(request),
        secret_key=cfg.secret_key,
        ttl_hours=cfg.session_ttl_hours,
        now=request.app.state.clock,
    )


def _redirect(url: str, msg: str = "") -> RedirectResponse:
    if msg:
        url += ("&" if "?" in url else "?") + urlencode({"msg": msg})
    return RedirectResponse(url=url, status_code=303)


def _safe_next(target: Optional[str], default: str) -> str:
    if not target or not target.startswith("/") or target.startswith("//"):
        return default
    return target


def _cart_count(request: Request) -> int:
    try:
        return _cart(request).item_count()
    except StoreError:
        logger.warning("cart badge unavailable for %s", request.state.sid)
        return 0


def _load(what: str, fn: Callable[..., list], *args: Any, **kwargs: Any) -> tuple[list, str]:
    """Runs a catalog read; a store failure gives no rows and a notice for the page."""
    try:
        return fn(*args, **kwargs), ""
    except StoreError:
        logger.exception("loading %s failed", what)
        return [], f"Could not load {what}. Please try again."


def _render(request: Request, name: str, ctx: dict[str, Any], notice: str = "") -> HTMLResponse:
    cfg = _cfg(request)
    base = {
        "cfg": cfg,
        "message": notice or request.query_params.get("msg", ""),
        "money": lambda v: money(v, cfg),
        "image_url": lambda n: catalog.image_url(_objects(request), n),
        "cart_count": _cart_count(request),
    }
    base.update(ctx)
    return templates.TemplateResponse(request, name, base)


def require_admin(request: Request) -> AdminSession:
    guard = _guard(request)
    guard.check()
    path = request.url.path
    if request.url.query:
        path += f"?{request.url.query}"
    decision = guard.gate(path)
    if decision.action != "render":
        raise GateBlocked(decision)
    return guard.session


# ---------------- storefront ----------------

@router.get("/", response_class=HTMLResponse)
def index(request: Request):
    store = _store(request)
    categories, err_c = _load("categories", catalog.list_categories, store)
    rows, err_p = _load("products", catalog.list_products, store)
    return _render(
        request,
        "index.html",
        {"categories": categories, "products": rows[:8]},
        notice=err_c or err_p,
    )


@router.get("/products", response_class=HTMLResponse)
def products(request: Request, category: str = "All", q: str = ""):
    store = _store(request)
    categories, err_c = _load("categories", catalog.list_categories, store)
    rows, err_p = _load("products", catalog.list_products, store, category=category, query=q)
    return _render(
        request,
        "products.html",
        {
            "categories": categories,
            "products": rows,
            "active_category": category,
            "query": q,
        },
        notice=err_c or err_p,
    )


@router.post("/cart/add")
def cart_add(request: Request, product_id: str = Form(...), next: str = Form("/products")):
    target = _safe_next(next, "/products")
    try:
        product = catalog.get_product(_store(request), product_id)
    except StoreError:
        logger.exception("product lookup failed")
        return _redirect(target, "Could not load product. Please try again.")
    if product is None:
        return _redirect(target, "Product not found")

    notes: List[str] = []
    _cart(request, notes).add_to_cart(product)
    return _redirect(target, " · ".join(notes))


@router.get("/cart", response_class=HTMLResponse)
def cart_view(request: Request):
    try:
        cart = _cart(request)
        applied = cart.applied_coupon()
    except StoreError:
        logger.exception("loading cart failed")
        return _render(request, "cart.html", {"cart": None}, notice="Could not load your cart. Please try again.")
    sub = cart.get_cart_total()
    cfg = _cfg(request)
    return _render(
        request,
        "cart.html",
        {
            "cart": cart,
            "line_total": pricing.line_total,
            "applied": applied,
            "applied_label": discount_label(applied.discount_amount, applied.is_percentage, cfg) if applied else "",
            "subtotal": sub,
            "discount": pricing.discount_amount(sub, applied),
            "total": pricing.final_total(sub, applied),
        },
    )


@router.post("/cart/update")
def cart_update(request: Request, product_id: str = Form(...), quantity: int = Form(...)):
    _cart(request).update_quantity(product_id, quantity)
    return _redirect("/cart")


@router.post("/cart/remove")
def cart_remove(request: Request, product_id: str = Form(...)):
    _cart(request).remove_from_cart(product_id)
    return _redirect("/cart")


@router.post("/cart/clear")
def cart_clear(request: Request):
    _cart(request).clear_cart()
    return _redirect("/cart", "Cart cleared")


@router.post("/cart/coupon")
def cart_coupon(request: Request, background_tasks: BackgroundTasks, code: str = Form("")):
    cart = _cart(request)
    ok, why = cart.can_apply_coupon()
    if not ok:
        return _redirect("/cart", why)

    validator = _validator(request)
    result = validator.validate(code)
    if result.ok:
        cart.apply_coupon(result.applied)
        # counted after the response goes out
        background_tasks.add_task(validator.record_usage, result.coupon_id)
    return _redirect("/cart", result.message)


@router.post("/cart/coupon/remove")
def cart_coupon_remove(request: Request):
    _cart(request).remove_coupon()
    return _redirect("/cart")


@router.post("/cart/checkout")
def cart_checkout(
    request: Request,
    name: str = Form(...),
    phone: str = Form(...),
    address: str = Form(...),
):
    cart = _cart(request)
    cart.set_customer_info(CustomerInfo(name=name.strip(), phone=phone.strip(), address=address.strip()))
    link = cart.generate_checkout_message(cart.applied_coupon())
    if not link:
        return _redirect("/cart", "Your cart is empty")
    return RedirectResponse(url=link, status_code=303)


# ---------------- admin: session ----------------

@router.get("/admin/login", response_class=HTMLResponse)
def admin_login_get(request: Request, next: str = "/admin"):
    return _render(request, "admin_login.html", {"next": _safe_next(next, "/admin")})


@router.post("/admin/login")
def admin_login_post(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    next: str = Form("/admin"),
):
    target = _safe_next(next, "/admin")
    if not _guard(request).login(email, password):
        return _redirect(f"/admin/login?{urlencode({'next': target})}", "Invalid email or password")
    return _redirect(target, "Login successful")


@router.post("/admin/logout")
def admin_logout(request: Request):
    _guard(request).logout()
    return _redirect("/admin/login", "Logged out")


@router.get("/admin")
def admin_home(admin: AdminSession = Depends(require_admin)):
    return _redirect("/admin/products")


# ---------------- admin: products ----------------

def _read_upload(request: Request, upload: Optional[UploadFile]) -> tuple[bool, Optional[str]]:
    if upload is None or not upload.filename:
        return True, None
    return catalog.store_image(_objects(request), upload.filename, upload.file.read())


@router.get("/admin/products", response_class=HTMLResponse)
def admin_products(
    request: Request,
    category: str = "All",
    q: str = "",
    edit: str = "",
    admin: AdminSession = Depends(require_admin),
):
    store = _store(request)
    rows, err_p = _load("products", catalog.list_products, store, category=category, query=q)
    categories, err_c = _load("categories", catalog.list_categories, store)
    editing = None
    if edit:
        everything, err_e = _load("products", catalog.list_products, store)
        editing = next((r for r in everything if r["id"] == edit), None)
        err_p = err_p or err_e
    return _render(
        request,
        "admin_products.html",
        {
            "admin": admin,
            "products": rows,
            "categories": categories,
            "active_category": category,
            "query": q,
            "editing": editing,
        },
        notice=err_p or err_c,
    )


@router.post("/admin/products/save")
def admin_products_save(
    request: Request,
    product_id: str = Form(""),
    name: str = Form(...),
    price: str = Form(...),
    category_id: str = Form(""),
    stock: str = Form(""),
    description: str = Form(""),
    image: Optional[UploadFile] = File(None),
    admin: AdminSession = Depends(require_admin),
):
    ok, image_name = _read_upload(request, image)
    if not ok:
        return _redirect("/admin/products", image_name)
    ok, msg = catalog.save_product(
        _store(request),
        product_id or None,
        name,
        price,
        category_id or None,
        stock,
        description,
        image_name,
        objects=_objects(request),
    )
    return _redirect("/admin/products", msg)


@router.post("/admin/products/delete")
def admin_products_delete(
    request: Request,
    ids: List[str] = Form(...),
    admin: AdminSession = Depends(require_admin),
):
    ok, msg = catalog.delete_products(_store(request), _objects(request), ids)
    return _redirect("/admin/products", msg)


# ---------------- admin: categories ----------------

@router.get("/admin/categories", response_class=HTMLResponse)
def admin_categories(request: Request, edit: str = "", admin: AdminSession = Depends(require_admin)):
    rows, err = _load("categories", catalog.list_categories, _store(request))
    editing = next((r for r in rows if r["id"] == edit), None) if edit else None
    return _render(
        request, "admin_categories.html", {"admin": admin, "categories": rows, "editing": editing}, notice=err
    )


@router.post("/admin/categories/save")
def admin_categories_save(
    request: Request,
    category_id: str = Form(""),
    name: str = Form(...),
    description: str = Form(""),
    image: Optional[UploadFile] = File(None),
    admin: AdminSession = Depends(require_admin),
):
    ok, image_name = _read_upload(request, image)
    if not ok:
        return _redirect("/admin/categories", image_name)
    ok, msg = catalog.save_category(
        _store(request), category_id or None, name, description, image_name, objects=_objects(request)
    )
    return _redirect("/admin/categories", msg)


@router.post("/admin/categories/{category_id}/delete")
def admin_categories_delete(request: Request, category_id: str, admin: AdminSession = Depends(require_admin)):
    ok, msg = catalog.delete_category(_store(request), _objects(request), category_id)
    return _redirect("/admin/categories", msg)


# ---------------- admin: coupons ----------------

@router.get("/admin/coupons", response_class=HTMLResponse)
def admin_coupons(request: Request, edit: str = "", admin: AdminSession = Depends(require_admin)):
    rows, err = _load("coupons", catalog.list_coupons, _store(request))
    editing = next((r for r in rows if r["id"] == edit), None) if edit else None
    return _render(request, "admin_coupons.html", {"admin": admin, "coupons": rows, "editing": editing}, notice=err)


@router.post("/admin/coupons/save")
def admin_coupons_save(
    request: Request,
    coupon_id: str = Form(""),
    code: str = Form(...),
    discount_amount: str = Form(...),
    is_percentage: bool = Form(False),
    start_date: str = Form(...),
    expiry_date: str = Form(...),
    usage_limit: str = Form(""),
    success_message: str = Form(""),
    active: bool = Form(False),
    admin: AdminSession = Depends(require_admin),
):
    ok, msg = catalog.save_coupon(
        _store(request),
        coupon_id or None,
        code,
        discount_amount,
        is_percentage,
        start_date,
        expiry_date,
        usage_limit,
        success_message,
        active,
    )
    return _redirect("/admin/coupons", msg)


@router.post("/admin/coupons/{coupon_id}/delete")
def admin_coupons_delete(request: Request, coupon_id: str, admin: AdminSession = Depends(require_admin)):
    ok, msg = catalog.delete_coupon(_store(request), coupon_id)
    return _redirect("/admin/coupons", msg)


# ---------------- app ----------------

def _seed_admin(cfg: Settings, store: SqliteStore) -> None:
    if not (cfg.admin_email and cfg.admin_password):
        return
    if store.select_one(ADMINS, {"email": normalize_email(cfg.admin_email)}) is None:
        create_admin(store, cfg.admin_email, cfg.admin_password, name="Admin")
        logger.info("seeded admin %s", cfg.admin_email)


def create_app(cfg: Settings = settings, clock=None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        os.makedirs(cfg.media_dir, exist_ok=True)
        app.state.store.init_db()
        _seed_admin(cfg, app.state.store)
        if cfg.secret_key == "storefront-dev-secret":
            logger.warning("SECRET_KEY is not set, admin sessions use the development key")
        yield

    app = FastAPI(title="Storefront", lifespan=lifespan)
    app.state.cfg = cfg
    app.state.store = SqliteStore(cfg.db_path)
    app.state.objects = ObjectStorage(cfg.media_dir, cfg.public_base_url)
    app.state.clock = clock or utc_now

    @app.middleware("http")
    async def _client_slot(request: Request, call_next):
        sid = request.cookies.get(SID_COOKIE)
        fresh = not sid
        request.state.sid = sid or uuid.uuid4().hex
        response = await call_next(request)
        if fresh:
            response.set_cookie(SID_COOKIE, request.state.sid, httponly=True, samesite="lax", max_age=60 * 60 * 24 * 365)
        return response

    @app.exception_handler(GateBlocked)
    async def _gate_blocked(request: Request, exc: GateBlocked):
        if exc.decision.action == "redirect":
            return RedirectResponse(url=exc.decision.location, status_code=303)
        return templates.TemplateResponse(request, "admin_waiting.html", {"cfg": cfg}, status_code=202)

    @app.exception_handler(StoreError)
    async def _store_down(request: Request, exc: StoreError):
        logger.error("store unavailable on %s %s: %s", request.method, request.url.path, exc)
        return _redirect("/", STORE_DOWN)

    # media dir is created on startup
    app.mount("/media", StaticFiles(directory=cfg.media_dir, check_dir=False), name="media")
    if STATIC_DIR.exists():
        app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")

    app.include_router(router)
    return app


app = create_app()


def run() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    uvicorn.run(app, host=settings.web_host, port=settings.web_port)
