"""Bill-of-materials import: spreadsheet / photo -> candidate inventory rows.

Spreadsheets are read locally; photos, PDFs and plain text go to the AI
gateway for extraction.  Candidates are returned to the client for review
and come back to ``confirm_import`` with a ``selected`` flag.
"""

from __future__ import annotations

import base64
import csv
import io
import logging
import os
import zipfile
from decimal import Decimal
from typing import Any, Dict, List, Optional

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from extensions import db
from models import InventoryItem
from services.ai_gateway import extract_json, get_gateway
from services.audit import log_action
from services.errors import ValidationError
from services.i18n import Msg
from services.inventory import generate_sku
from services.subscription import consume_usage, require_limit
from utils import money, money_str, safe_decimal, safe_int

logger = logging.getLogger(__name__)

COST_RATIO = Decimal("0.7")

# Candidate field -> accepted column headers (compared case-insensitively).
COLUMN_ALIASES: Dict[str, tuple] = {
    "name": ("item name", "name", "product", "product name", "description", "item"),
    "quantity": ("qty", "quantity", "units", "stock"),
    "price": ("price", "cost", "unit price", "rate", "mrp", "selling price"),
    "sku": ("sku", "item code", "code", "barcode"),
    "size": ("size",),
    "color": ("color", "colour"),
    "category": ("category", "type"),
}

_EXTENSION_KINDS = {
    ".csv": "csv",
    ".xlsx": "xlsx",
    ".xlsm": "xlsx",
    ".png": "image",
    ".jpg": "image",
    ".jpeg": "image",
    ".webp": "image",
    ".pdf": "pdf",
    ".txt": "text",
}

PARSE_PROMPT = (
    "Extract every product line from this bill or stock list. Reply with JSON only: "
    '{"items": [{"name": "", "quantity": 1, "price": 0, "size": "", "color": "", '
    '"sku": "", "category": ""}], "summary": ""}'
)


def detect_kind(filename: str, content_type: Optional[str] = None) -> str:
    ext = os.path.splitext(filename or "")[1].lower()
    if ext in _EXTENSION_KINDS:
        return _EXTENSION_KINDS[ext]
    content_type = (content_type or "").lower()
    if content_type.startswith("image/"):
        return "image"
    if content_type == "application/pdf":
        return "pdf"
    if content_type in ("text/csv", "application/csv"):
        return "csv"
    if content_type.startswith("text/"):
        return "text"
    raise ValidationError(Msg.UNSUPPORTED_FILE)


# ---------------------------------------------------------------------------
# Local spreadsheet readers
# ---------------------------------------------------------------------------

def _read_csv(content: bytes) -> List[Dict[str, Any]]:
    text = content.decode("utf-8-sig", errors="replace")
    try:
        dialect = csv.Sniffer().sniff(text[:4096], delimiters=",;\t")
    except csv.Error:
        dialect = csv.excel
    return list(csv.DictReader(io.StringIO(text), dialect=dialect))


def _read_xlsx(content: bytes) -> List[Dict[str, Any]]:
    wb = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    rows = []
    headers: List[str] = []
    try:
        for i, row in enumerate(wb.active.iter_rows(values_only=True)):
            if i == 0:
                headers = [str(cell) if cell else f"col_{j}" for j, cell in enumerate(row)]
                continue
            row_dict = {headers[j]: cell for j, cell in enumerate(row) if j < len(headers)}
            if any(v is not None for v in row_dict.values()):
                rows.append(row_dict)
    finally:
        wb.close()
    return rows


def _pick(row: Dict[str, Any], field: str):
    lowered = {str(k).strip().lower(): v for k, v in row.items() if k is not None}
    for alias in COLUMN_ALIASES[field]:
        value = lowered.get(alias)
        if value not in (None, ""):
            return value
    return None


def _clean(value) -> str:
    return str(value).strip() if value is not None else ""


def normalize_row(row: Dict[str, Any]) -> Optional[dict]:
    """Map a raw row to a candidate.  Rows without a name give None."""
    name = _clean(_pick(row, "name"))
    if not name:
        return None
    quantity = safe_int(_pick(row, "quantity"), default=1)
    price = safe_decimal(_pick(row, "price"))
    return {
        "name": name,
        "quantity": max(quantity, 0),
        "price": money_str(max(price, Decimal("0"))),
        "sku": _clean(_pick(row, "sku")),
        "size": _clean(_pick(row, "size")),
        "color": _clean(_pick(row, "color")),
        "category": _clean(_pick(row, "category")),
        "selected": True,
    }


# ---------------------------------------------------------------------------
# AI extraction
# ---------------------------------------------------------------------------

def _ai_content(kind: str, filename: str, content: bytes, content_type: Optional[str]) -> list:
    if kind == "text":
        return [{"type": "text", "text": PARSE_PROMPT + "\n\n" + content.decode("utf-8", errors="replace")}]
    encoded = base64.b64encode(content).decode("ascii")
    if kind == "image":
        mime = content_type if (content_type or "").startswith("image/") else "image/jpeg"
        part = {"type": "image_url", "image_url": {"url": f"data:{mime};base64,{encoded}"}}
    else:
        part = {
            "type": "file",
            "file": {"filename": filename, "file_data": f"data:application/pdf;base64,{encoded}"},
        }
    return [{"type": "text", "text": PARSE_PROMPT}, part]


def _parse_with_ai(kind: str, filename: str, content: bytes, content_type: Optional[str]) -> tuple:
    reply = get_gateway().chat_completion(
        [{"role": "user", "content": _ai_content(kind, filename, content, content_type)}]
    )
    data = extract_json(reply.get("content"))
    if data is None:
        logger.warning("AI parse of %s returned no JSON", filename)
        return [], ""
    items = data.get("items") if isinstance(data.get("items"), list) else []
    return [row for row in items if isinstance(row, dict)], str(data.get("summary") or "")


def parse_upload(filename: str, content: bytes, content_type: Optional[str] = None) -> dict:
    """Return ``{"kind", "items", "summary"}`` with candidate rows for review."""
    if not content:
        raise ValidationError(detail="file is empty")
    kind = detect_kind(filename, content_type)
    summary = ""
    if kind == "csv":
        raw_rows = _read_csv(content)
    elif kind == "xlsx":
        try:
            raw_rows = _read_xlsx(content)
        except (OSError, ValueError, KeyError, zipfile.BadZipFile, InvalidFileException) as exc:
            logger.warning("Could not read spreadsheet %s: %s", filename, exc)
            raise ValidationError(Msg.UNSUPPORTED_FILE)
    else:
        raw_rows, summary = _parse_with_ai(kind, filename, content, content_type)

    candidates = [c for c in (normalize_row(r) for r in raw_rows) if c is not None]
    logger.info(
        "Parsed %s (%s): %s candidates from %s rows", filename, kind, len(candidates), len(raw_rows)
    )
    return {"kind": kind, "items": candidates, "summary": summary}


# ---------------------------------------------------------------------------
# Confirmation
# ---------------------------------------------------------------------------

def confirm_import(user_id: int, rows: List[dict]) -> List[InventoryItem]:
    """Insert the selected candidate rows as new inventory items.

    Cost price is estimated at 70% of the selling price and missing SKUs
    are generated.  Existing items are never matched or merged.  On the
    demo plan the whole batch must fit the remaining allowance.  Commits.
    """
    selected = [r for r in rows or [] if isinstance(r, dict) and r.get("selected", True)]
    if not selected:
        raise ValidationError(Msg.NOTHING_SELECTED)

    items = []
    for index, row in enumerate(selected, start=1):
        name = _clean(row.get("name"))
        if not name:
            raise ValidationError(detail=f"row {index}: name is required")
        price = safe_decimal(row.get("price"))
        if price < 0:
            raise ValidationError(detail=f"row {index}: invalid price")
        items.append(
            InventoryItem(
                user_id=user_id,
                name=name,
                quantity=max(safe_int(row.get("quantity"), default=1), 0),
                price=money(price),
                cost_price=money(price * COST_RATIO),
                sku=_clean(row.get("sku")) or generate_sku(name),
                size=_clean(row.get("size")) or None,
                color=_clean(row.get("color")) or None,
                category=_clean(row.get("category")) or None,
            )
        )

    require_limit(user_id, "inventory", amount=len(items))
    try:
        db.session.add_all(items)
        consume_usage(user_id, "inventory", amount=len(items))
        log_action("import", "inventory_item", None, f"{len(items)} items", user_id=user_id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("Imported %s inventory items for user %s", len(items), user_id)
    return items
