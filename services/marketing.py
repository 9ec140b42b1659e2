"""Marketing poster and caption generation."""

from __future__ import annotations

import logging
from typing import Optional

from services.ai_gateway import get_gateway
from services.errors import ValidationError
from services.shop import get_shop_settings

logger = logging.getLogger(__name__)

TEMPLATES = ("sale", "festival", "new-arrival", "custom")
LANGUAGES = {"en": "English", "hi": "Hindi"}


def _poster_brief(template: str, shop_name: str, details: dict) -> str:
    if template == "sale":
        discount = details.get("discount") or 10
        return f"{discount}% off sale at {shop_name}"
    if template == "festival":
        festival = details.get("festival") or "the festive season"
        return f"{festival} greetings and offers from {shop_name}"
    if template == "new-arrival":
        product = details.get("product") or "the latest collection"
        return f"New arrivals at {shop_name}: {product}"
    text = (details.get("poster_text") or "").strip()
    if not text:
        raise ValidationError(detail="poster_text is required for a custom poster")
    return f"{text} ({shop_name})"


def generate_marketing(
    user_id: int,
    template: str,
    language: str = "en",
    details: Optional[dict] = None,
    *,
    with_image: bool = True,
) -> dict:
    """Return ``{"caption", "image", "template", "language"}``.

    A failed image generation leaves ``image`` as None; the caption is
    still returned.
    """
    if template not in TEMPLATES:
        raise ValidationError(detail=f"template must be one of {', '.join(TEMPLATES)}")
    if language not in LANGUAGES:
        raise ValidationError(detail="language must be 'en' or 'hi'")
    details = details or {}
    shop_name = get_shop_settings(user_id).shop_name or "our shop"
    brief = _poster_brief(template, shop_name, details)

    gateway = get_gateway()
    reply = gateway.chat_completion(
        [
            {
                "role": "system",
                "content": (
                    "Write one short social media caption with a few relevant "
                    f"hashtags for a retail shop. Language: {LANGUAGES[language]}."
                ),
            },
            {"role": "user", "content": brief},
        ]
    )
    caption = (reply.get("content") or "").strip()

    image = None
    if with_image:
        image = gateway.generate_image(
            f"Bright retail marketing poster, square format. Theme: {brief}. "
            f"Poster text in {LANGUAGES[language]}."
        )
        if image is None:
            logger.warning("No poster image for user %s (%s)", user_id, template)
    return {"caption": caption, "image": image, "template": template, "language": language}
