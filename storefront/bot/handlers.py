import asyncio
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from aiogram import Router, html
from aiogram.filters import Command, CommandObject
from aiogram.fsm.context import FSMContext
from aiogram.types import Message, ReplyKeyboardRemove

from storefront.bot.keyboards import checkout_kb, main_kb
from storefront.bot.states import CustomerInfoForm
from storefront.config import Settings, settings
from storefront.constants import PRODUCTS
from storefront.db.sqlite import SqliteStore, StoreError
from storefront.services import catalog, pricing
from storefront.services.cart import CartStore
from storefront.services.client_storage import ClientStorage
from storefront.services.coupons import CouponValidator
from storefront.services.models import CustomerInfo, Product
from storefront.services.pricing import AppliedCoupon
from storefront.utils.formatters import discount_label, money

logger = logging.getLogger(__name__)

router = Router()

SHORT_ID = 8

# keeps background usage updates alive until they finish
_PENDING: set = set()


def _slot(message: Message) -> str:
    return f"tg:{message.from_user.id}"


def _cart(store: SqliteStore, message: Message, notes: Optional[List[str]] = None) -> CartStore:
    notify = notes.append if notes is not None else (lambda _: None)
    return CartStore(ClientStorage(store, _slot(message)), notify=notify, cfg=settings)


def find_product(store: SqliteStore, key: str) -> Optional[Product]:
    """Exact id, or a unique id prefix of at least SHORT_ID characters."""
    key = (key or "").strip().lower()
    if not key:
        return None
    product = catalog.get_product(store, key)
    if product is not None or len(key) < SHORT_ID:
        return product
    hits = [r for r in store.select(PRODUCTS) if r["id"].startswith(key)]
    return Product.from_row(hits[0]) if len(hits) == 1 else None


def products_text(rows: List[Dict[str, Any]], cfg: Settings = settings) -> str:
    if not rows:
        return "No products found."
    lines = ["<b>Products:</b>"]
    for r in rows:
        cat = f" ({html.quote(r['category']['name'])})" if r.get("category") else ""
        lines.append(
            f"• {html.quote(r['name'])}{cat} — {html.quote(money(float(r['price']), cfg))}  /add_{r['id'][:SHORT_ID]}"
        )
    return "\n".join(lines)


def cart_text(cart: CartStore, applied: Optional[AppliedCoupon], cfg: Settings = settings) -> str:
    if cart.is_empty():
        return "Your cart is empty. Browse: /products"

    lines = ["<b>Your cart:</b>"]
    for n, e in enumerate(cart.entries, start=1):
        lines.append(
            f"{n}. {html.quote(e.product.name)} — {html.quote(money(e.product.price, cfg))} x {e.quantity} "
            f"= {html.quote(money(pricing.line_total(e), cfg))}"
        )
    sub = cart.get_cart_total()
    lines += ["", f"Subtotal: {html.quote(money(sub, cfg))}"]
    if applied is not None:
        lines.append(
            f"Discount ({html.quote(applied.code)}, {html.quote(discount_label(applied.discount_amount, applied.is_percentage, cfg))}): "
            f"-{html.quote(money(pricing.discount_amount(sub, applied), cfg))}"
        )
    lines.append(f"<b>Total: {html.quote(money(pricing.final_total(sub, applied), cfg))}</b>")
    return "\n".join(lines)


def try_coupon(cart: CartStore, validator: CouponValidator, code: str) -> Tuple[Optional[str], str]:
    """Applies the code to the cart. Returns (coupon id whose usage to record, reply)."""
    ok, why = cart.can_apply_coupon()
    if not ok:
        return None, why
    result = validator.validate(code)
    if not result.ok:
        return None, result.message
    cart.apply_coupon(result.applied)
    return result.coupon_id, result.message


@router.message(Command("start"))
async def cmd_start(message: Message):
    await message.answer(
        f"🛒 Welcome to <b>{html.quote(settings.store_name)}</b>!\nBrowse /products or see /help",
        reply_markup=main_kb(),
    )


@router.message(Command("help"))
async def cmd_help(message: Message):
    text = (
        "<b>Commands</b>\n\n"
        "/categories — list categories\n"
        "/products [category] — list products\n"
        "/add ID — add a product to the cart\n"
        "/cart — show the cart\n"
        "/qty ID N — set quantity (0 removes)\n"
        "/remove ID — remove a product\n"
        "/clear — empty the cart\n"
        "/coupon CODE — apply a coupon\n"
        "/uncoupon — remove the coupon\n"
        "/info — set name, phone and address\n"
        "/checkout — send the order via WhatsApp\n"
        "/cancel — stop the current input"
    )
    await message.answer(text)


@router.message(Command("cancel"))
async def cmd_cancel(message: Message, state: FSMContext):
    await state.clear()
    await message.answer("❎ Cancelled.", reply_markup=main_kb())


@router.message(Command("categories"))
async def cmd_categories(message: Message, store: SqliteStore):
    try:
        rows = catalog.list_categories(store)
    except StoreError:
        logger.exception("listing categories failed")
        await message.answer("❌ Could not load categories, try again later.")
        return
    if not rows:
        await message.answer("No categories yet.")
        return
    lines = ["<b>Categories:</b>"]
    for r in rows:
        lines.append(f"• {html.quote(r['name'])}")
    await message.answer("\n".join(lines))


@router.message(Command("products"))
async def cmd_products(message: Message, command: CommandObject, store: SqliteStore):
    category = (command.args or "").strip() or None
    try:
        rows = catalog.list_products(store, category=category)
    except StoreError:
        logger.exception("listing products failed")
        await message.answer("❌ Could not load products, try again later.")
        return
    await message.answer(products_text(rows))


async def _add(message: Message, store: SqliteStore, key: str) -> None:
    try:
        product = find_product(store, key)
    except StoreError:
        logger.exception("product lookup failed")
        await message.answer("❌ Could not load the product, try again later.")
        return
    if product is None:
        await message.answer("Product not found. See /products")
        return

    notes: List[str] = []
    _cart(store, message, notes).add_to_cart(product)
    await message.answer("✅ " + html.quote(" · ".join(notes)))


@router.message(Command(re.compile(r"add_([0-9a-f]+)")))
async def cmd_add_short(message: Message, command: CommandObject, store: SqliteStore):
    await _add(message, store, command.regexp_match.group(1))


@router.message(Command("add"))
async def cmd_add(message: Message, command: CommandObject, store: SqliteStore):
    if not command.args:
        await message.answer("Format: /add ID")
        return
    await _add(message, store, command.args)


@router.message(Command("cart"))
async def cmd_cart(message: Message, store: SqliteStore):
    cart = _cart(store, message)
    await message.answer(cart_text(cart, cart.applied_coupon()))


@router.message(Command("qty"))
async def cmd_qty(message: Message, command: CommandObject, store: SqliteStore):
    parts = (command.args or "").split()
    if len(parts) != 2:
        await message.answer("Format: /qty ID N")
        return
    try:
        qty = int(parts[1])
    except ValueError:
        await message.answer("N must be a whole number")
        return

    try:
        product = find_product(store, parts[0])
    except StoreError:
        logger.exception("product lookup failed")
        await message.answer("❌ Could not load the product, try again later.")
        return

    cart = _cart(store, message)
    cart.update_quantity(product.id if product else parts[0], qty)
    await message.answer(cart_text(cart, cart.applied_coupon()))


@router.message(Command("remove"))
async def cmd_remove(message: Message, command: CommandObject, store: SqliteStore):
    key = (command.args or "").strip()
    if not key:
        await message.answer("Format: /remove ID")
        return
    cart = _cart(store, message)
    for e in list(cart.entries):
        if e.product.id == key or (len(key) >= SHORT_ID and e.product.id.startswith(key)):
            cart.remove_from_cart(e.product.id)
    await message.answer(cart_text(cart, cart.applied_coupon()))


@router.message(Command("clear"))
async def cmd_clear(message: Message, store: SqliteStore):
    _cart(store, message).clear_cart()
    await message.answer("🧺 Cart cleared.")


@router.message(Command("coupon"))
async def cmd_coupon(message: Message, command: CommandObject, store: SqliteStore):
    code = (command.args or "").strip()
    if not code:
        await message.answer("Format: /coupon CODE")
        return

    validator = CouponValidator(store)
    coupon_id, reply = try_coupon(_cart(store, message), validator, code)
    if coupon_id is None:
        await message.answer(f"❌ {html.quote(reply)}")
        return

    task = asyncio.create_task(asyncio.to_thread(validator.record_usage, coupon_id))
    _PENDING.add(task)
    task.add_done_callback(_PENDING.discard)

    await message.answer(f"✅ {html.quote(reply)}")


@router.message(Command("uncoupon"))
async def cmd_uncoupon(message: Message, store: SqliteStore):
    _cart(store, message).remove_coupon()
    await message.answer("Coupon removed.")


@router.message(Command("info"))
async def cmd_info(message: Message, state: FSMContext):
    await state.set_state(CustomerInfoForm.waiting_name)
    await message.answer("1/3) Your full name?\nCancel: /cancel", reply_markup=ReplyKeyboardRemove())


@router.message(CustomerInfoForm.waiting_name)
async def info_name(message: Message, state: FSMContext):
    name = (message.text or "").strip()
    if not name or name.startswith("/"):
        await message.answer("Please send your name as text. Cancel: /cancel")
        return
    await state.update_data(info_name=name)
    await state.set_state(CustomerInfoForm.waiting_phone)
    await message.answer("2/3) Your phone number?\nCancel: /cancel")


@router.message(CustomerInfoForm.waiting_phone)
async def info_phone(message: Message, state: FSMContext):
    phone = (message.text or "").strip()
    if not phone or phone.startswith("/"):
        await message.answer("Please send your phone number. Cancel: /cancel")
        return
    await state.update_data(info_phone=phone)
    await state.set_state(CustomerInfoForm.waiting_address)
    await message.answer("3/3) Delivery address?\nCancel: /cancel")


@router.message(CustomerInfoForm.waiting_address)
async def info_address(message: Message, state: FSMContext, store: SqliteStore):
    address = (message.text or "").strip()
    if not address or address.startswith("/"):
        await message.answer("Please send your address as text. Cancel: /cancel")
        return

    data = await state.get_data()
    info = CustomerInfo(name=data.get("info_name", ""), phone=data.get("info_phone", ""), address=address)
    _cart(store, message).set_customer_info(info)
    await state.set_state(None)
    await message.answer("✅ Details saved. Ready to /checkout", reply_markup=main_kb())


@router.message(Command("checkout"))
async def cmd_checkout(message: Message, store: SqliteStore):
    cart = _cart(store, message)
    if cart.customer_info is None:
        await message.answer("Tell us where to deliver first: /info")
        return

    applied = cart.applied_coupon()
    link = cart.generate_checkout_message(applied)
    if not link:
        await message.answer("Your cart is empty. Browse: /products")
        return
    await message.answer(cart_text(cart, applied), reply_markup=checkout_kb(link))
