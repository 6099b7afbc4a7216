PRODUCTS = "products"
CATEGORIES = "categories"
COUPONS = "coupons"
ADMINS = "admins"

RELATIONS = (PRODUCTS, CATEGORIES, COUPONS, ADMINS)

# client storage keys (one slot per browser / chat user)
KEY_CART = "cart"
KEY_CUSTOMER_INFO = "customerInfo"
KEY_ADMIN_SESSION = "adminSession"
KEY_APPLIED_COUPON = "appliedCoupon"

IMAGE_BUCKET = "product_images"
IMAGE_EXTENSIONS = (".jpeg", ".jpg", ".png", ".webp")
IMAGE_MAX_BYTES = 5 * 1024 * 1024

DEFAULT_SUCCESS_MESSAGE = "Coupon applied successfully!"

COUPON_MESSAGES = {
    "applied": DEFAULT_SUCCESS_MESSAGE,
    "invalid_code": "Invalid coupon code. Please try again.",
    "expired": "Coupon has expired or is not active yet.",
    "limit_reached": "Coupon usage limit has been reached.",
}

COUPON_NEEDS_ITEMS = "Add items to your cart before applying a coupon."
COUPON_ALREADY_APPLIED = "A coupon is already applied. Remove it to use another one."

ADMIN_LOGIN_PATH = "/admin/login"
