"""English / Hindi message table for user-facing strings."""

from __future__ import annotations

import enum
import logging

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "en"


class Msg(str, enum.Enum):
    """Every translatable message key.  Adding a key requires both texts."""
    LOGIN_REQUIRED = "login_required"
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_INACTIVE = "account_inactive"
    PHONE_TAKEN = "phone_taken"
    USERNAME_TAKEN = "username_taken"
    PERMISSION_DENIED = "permission_denied"
    FEATURE_LOCKED = "feature_locked"
    DEMO_LIMIT_BILLS = "demo_limit_bills"
    DEMO_LIMIT_INVENTORY = "demo_limit_inventory"
    DEMO_LIMIT_CUSTOMERS = "demo_limit_customers"
    INVALID_REQUEST = "invalid_request"
    ITEMS_REQUIRED = "items_required"
    CUSTOMER_REQUIRED = "customer_required"
    NAME_PHONE_REQUIRED = "name_phone_required"
    PRODUCT_NOT_FOUND = "product_not_found"
    INVALID_PLAN = "invalid_plan"
    UNSUPPORTED_FILE = "unsupported_file"
    NOTHING_SELECTED = "nothing_selected"
    INVOICE_CREATED = "invoice_created"
    INVOICE_FAILED = "invoice_failed"
    STOCK_ADDED = "stock_added"
    ITEMS_IMPORTED = "items_imported"
    SETTINGS_SAVED = "settings_saved"
    PLAN_ACTIVATED = "plan_activated"
    ATTENDANCE_MARKED = "attendance_marked"
    AI_RATE_LIMITED = "ai_rate_limited"
    AI_CREDITS_EXHAUSTED = "ai_credits_exhausted"
    AI_UNAVAILABLE = "ai_unavailable"
    NOT_FOUND = "not_found"
    TOO_MANY_REQUESTS = "too_many_requests"
    SERVER_ERROR = "server_error"


TRANSLATIONS: dict[Msg, dict[str, str]] = {
    Msg.LOGIN_REQUIRED: {
        "en": "Please log in to continue.",
        "hi": "जारी रखने के लिए कृपया लॉग इन करें।",
    },
    Msg.INVALID_CREDENTIALS: {
        "en": "Invalid phone number or password.",
        "hi": "फ़ोन नंबर या पासवर्ड गलत है।",
    },
    Msg.ACCOUNT_INACTIVE: {
        "en": "This account is disabled.",
        "hi": "यह खाता बंद है।",
    },
    Msg.PHONE_TAKEN: {
        "en": "An account with this phone number already exists.",
        "hi": "इस फ़ोन नंबर से पहले से खाता मौजूद है।",
    },
    Msg.USERNAME_TAKEN: {
        "en": "This username is already in use.",
        "hi": "यह यूज़रनेम पहले से उपयोग में है।",
    },
    Msg.PERMISSION_DENIED: {
        "en": "You do not have permission for this action.",
        "hi": "आपको इस कार्य की अनुमति नहीं है।",
    },
    Msg.FEATURE_LOCKED: {
        "en": "Upgrade your plan to use {feature}.",
        "hi": "{feature} उपयोग करने के लिए अपना प्लान अपग्रेड करें।",
    },
    Msg.DEMO_LIMIT_BILLS: {
        "en": "Demo limit reached: {current}/{max} bills. Upgrade to continue.",
        "hi": "डेमो सीमा पूरी: {current}/{max} बिल। जारी रखने के लिए अपग्रेड करें।",
    },
    Msg.DEMO_LIMIT_INVENTORY: {
        "en": "Demo limit reached: {current}/{max} inventory items. Upgrade to continue.",
        "hi": "डेमो सीमा पूरी: {current}/{max} इन्वेंटरी आइटम। जारी रखने के लिए अपग्रेड करें।",
    },
    Msg.DEMO_LIMIT_CUSTOMERS: {
        "en": "Demo limit reached: {current}/{max} customers. Upgrade to continue.",
        "hi": "डेमो सीमा पूरी: {current}/{max} ग्राहक। जारी रखने के लिए अपग्रेड करें।",
    },
    Msg.INVALID_REQUEST: {
        "en": "Invalid request: {detail}",
        "hi": "अमान्य अनुरोध: {detail}",
    },
    Msg.ITEMS_REQUIRED: {
        "en": "Add at least one item to the bill.",
        "hi": "बिल में कम से कम एक आइटम जोड़ें।",
    },
    Msg.CUSTOMER_REQUIRED: {
        "en": "Customer not found.",
        "hi": "ग्राहक नहीं मिला।",
    },
    Msg.NAME_PHONE_REQUIRED: {
        "en": "Name and phone are required.",
        "hi": "नाम और फ़ोन आवश्यक हैं।",
    },
    Msg.PRODUCT_NOT_FOUND: {
        "en": "Product not found: {name}",
        "hi": "उत्पाद नहीं मिला: {name}",
    },
    Msg.INVALID_PLAN: {
        "en": "Unknown plan or billing cycle.",
        "hi": "अज्ञात प्लान या बिलिंग चक्र।",
    },
    Msg.UNSUPPORTED_FILE: {
        "en": "Unsupported file type.",
        "hi": "यह फ़ाइल प्रकार समर्थित नहीं है।",
    },
    Msg.NOTHING_SELECTED: {
        "en": "Select at least one item to import.",
        "hi": "आयात के लिए कम से कम एक आइटम चुनें।",
    },
    Msg.INVOICE_CREATED: {
        "en": "Invoice {number} created.",
        "hi": "बिल {number} बन गया।",
    },
    Msg.INVOICE_FAILED: {
        "en": "Could not create the invoice. Nothing was saved.",
        "hi": "बिल नहीं बन सका। कुछ भी सहेजा नहीं गया।",
    },
    Msg.STOCK_ADDED: {
        "en": "Added {quantity} to {name}.",
        "hi": "{name} में {quantity} जोड़े गए।",
    },
    Msg.ITEMS_IMPORTED: {
        "en": "{count} items imported.",
        "hi": "{count} आइटम आयात किए गए।",
    },
    Msg.SETTINGS_SAVED: {
        "en": "Settings saved.",
        "hi": "सेटिंग्स सहेजी गईं।",
    },
    Msg.PLAN_ACTIVATED: {
        "en": "Your {plan} plan is active.",
        "hi": "आपका {plan} प्लान सक्रिय है।",
    },
    Msg.ATTENDANCE_MARKED: {
        "en": "Attendance marked.",
        "hi": "उपस्थिति दर्ज की गई।",
    },
    Msg.AI_RATE_LIMITED: {
        "en": "Too many AI requests. Please try again shortly.",
        "hi": "बहुत अधिक AI अनुरोध। कृपया थोड़ी देर बाद प्रयास करें।",
    },
    Msg.AI_CREDITS_EXHAUSTED: {
        "en": "AI credits exhausted. Please add credits.",
        "hi": "AI क्रेडिट समाप्त। कृपया क्रेडिट जोड़ें।",
    },
    Msg.AI_UNAVAILABLE: {
        "en": "The AI assistant is unavailable right now.",
        "hi": "AI सहायक अभी उपलब्ध नहीं है।",
    },
    Msg.NOT_FOUND: {
        "en": "Not found.",
        "hi": "नहीं मिला।",
    },
    Msg.TOO_MANY_REQUESTS: {
        "en": "Too many requests. Please wait a minute.",
        "hi": "बहुत अधिक अनुरोध। कृपया एक मिनट प्रतीक्षा करें।",
    },
    Msg.SERVER_ERROR: {
        "en": "Something went wrong. Please try again.",
        "hi": "कुछ गलत हो गया। कृपया पुनः प्रयास करें।",
    },
}


def translate(key: Msg, language: str | None = None, **params) -> str:
    """Return the text for *key* in *language*, falling back to English."""
    texts = TRANSLATIONS[key]
    text = texts.get(language or DEFAULT_LANGUAGE) or texts[DEFAULT_LANGUAGE]
    if params:
        try:
            return text.format(**params)
        except (KeyError, IndexError):
            logger.warning("Missing parameter for message %s", key.value)
    return text
