ORDER_CREATED = "created"
ORDER_PROCESSING = "processing"
ORDER_IN_PRODUCTION = "in_production"
ORDER_SHIPPED = "shipped"
ORDER_DELIVERED = "delivered"
ORDER_CANCELLED = "cancelled"

ORDER_STATUSES = (
    ORDER_CREATED,
    ORDER_PROCESSING,
    ORDER_IN_PRODUCTION,
    ORDER_SHIPPED,
    ORDER_DELIVERED,
    ORDER_CANCELLED,
)

# forward-only fulfilment chain; cancel is allowed from anything not yet delivered
ORDER_TRANSITIONS = {
    ORDER_CREATED: (ORDER_PROCESSING, ORDER_CANCELLED),
    ORDER_PROCESSING: (ORDER_IN_PRODUCTION, ORDER_CANCELLED),
    ORDER_IN_PRODUCTION: (ORDER_SHIPPED, ORDER_CANCELLED),
    ORDER_SHIPPED: (ORDER_DELIVERED, ORDER_CANCELLED),
    ORDER_DELIVERED: (),
    ORDER_CANCELLED: (),
}

MESSAGE_TEXT = "text"
MESSAGE_IMAGE = "image"
MESSAGE_TYPES = (MESSAGE_TEXT, MESSAGE_IMAGE)

# prices are integer cents
DEFAULT_UNIT_PRICE = 500
SHIPPING_FLAT = 499
TAX_PERCENT = 8

# (min quantity, percent off); highest matching tier wins
QUANTITY_TIERS = (
    (50, 25),
    (25, 20),
    (10, 10),
)

GUEST_CART_KEY = "cart"

OPTION_TYPES = ("size", "material", "finish", "shape")

# attached to every catalog product, seeded and imported alike
DEFAULT_STICKER_OPTIONS = (
    ("size", "Small (2 x 3.8 in)", 0),
    ("size", "Medium (2.9 x 5.5 in)", 200),
    ("size", "Large (4.5 x 8.5 in)", 400),
    ("size", "Extra Large (7.5 x 14 in)", 800),
    ("material", "Prismatic", 200),
    ("material", "Kraft Paper", 0),
    ("material", "Hi-Tack Vinyl", 100),
    ("finish", "Glossy", 0),
    ("finish", "Matte", 100),
    ("shape", "Contour Cut", 200),
    ("shape", "Square", 0),
)

EBAY_FALLBACK_IMAGE = "https://i.imgur.com/FV6jJVk.jpg"
EBAY_FALLBACK_PRICE = 9.99
