import json
import logging
from decimal import Decimal, InvalidOperation

import requests
from django.conf import settings
from rest_framework.exceptions import ValidationError

from common.exceptions import UpstreamServiceError
from inventory.expiry import parse_expiry_date

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """Extract the data of a supplier delivery note and return it as JSON.

Output format:
{
  "supplier": "supplier name",
  "date": "YYYY-MM-DD",
  "products": [
    {"name": "product name", "quantity": number, "unit": "kg/L/units/g"}
  ]
}

Rules:
- Extract EVERY product in the table
- Split quantity and unit (e.g. "500 g" -> quantity: 500, unit: "g")
- If supplier or date cannot be found, use null
- If there are no products, return an empty array"""

DEFAULT_UNIT = "units"


class DeliveryNoteOCRClient:
    """
    Extracts supplier, date and product lines from a delivery note photo
    through an OpenAI-compatible chat completions endpoint.
    """

    def __init__(self, api_url=None, api_key=None, model=None, timeout=None):
        self.api_url = api_url or settings.OCR_API_URL
        self.api_key = api_key if api_key is not None else settings.OCR_API_KEY
        self.model = model or settings.OCR_MODEL
        self.timeout = timeout or settings.OCR_TIMEOUT_SECONDS

    def build_payload(self, image):
        return {
            "model": self.model,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": EXTRACTION_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": "Extract the data of this delivery note:"},
                        {"type": "image_url", "image_url": {"url": image}},
                    ],
                },
            ],
            "max_completion_tokens": 4000,
        }

    def extract(self, image):
        """
        Sends the image (a base64 data URL or a public URL) and returns
        ``{"supplier", "date", "products"}``. Raises UpstreamServiceError when
        the provider cannot be reached or answers with something unusable.
        """
        if not self.api_key:
            raise UpstreamServiceError("OCR provider is not configured.")

        try:
            response = requests.post(
                self.api_url,
                json=self.build_payload(image),
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as exc:
            logger.warning("ocr_request_failed error=%s", exc)
            raise UpstreamServiceError(f"OCR provider request failed: {exc}")
        except ValueError:
            raise UpstreamServiceError("OCR provider returned a non-JSON response.")

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise UpstreamServiceError("Invalid response structure from OCR provider.")

        if content is not None and not isinstance(content, str):
            raise UpstreamServiceError("Invalid response structure from OCR provider.")
        if not content or not content.strip():
            raise UpstreamServiceError("OCR provider returned empty content.")

        try:
            parsed = json.loads(content.strip())
        except ValueError:
            logger.warning("ocr_invalid_json content=%s", content[:200])
            raise UpstreamServiceError("Invalid JSON response from OCR provider.")

        if not isinstance(parsed, dict):
            raise UpstreamServiceError("Invalid JSON response from OCR provider.")
        if parsed.get("error"):
            raise UpstreamServiceError(str(parsed["error"]))

        return normalize_extraction(parsed)


def _clean_text(value):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _clean_date(value):
    try:
        parsed = parse_expiry_date(value)
    except ValidationError:
        return None
    return parsed.isoformat() if parsed else None


def _clean_quantity(value):
    try:
        quantity = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return Decimal("1")
    if not quantity.is_finite() or quantity <= 0:
        return Decimal("1")
    return quantity


def normalize_extraction(parsed):
    """Coerce provider output to the documented shape, dropping unusable product rows."""
    products = parsed.get("products")
    if not isinstance(products, list):
        products = []

    lines = []
    for product in products:
        if not isinstance(product, dict):
            continue
        name = _clean_text(product.get("name"))
        if not name:
            continue
        lines.append(
            {
                "name": name,
                "quantity": _clean_quantity(product.get("quantity")),
                "unit": _clean_text(product.get("unit")) or DEFAULT_UNIT,
            }
        )

    return {
        "supplier": _clean_text(parsed.get("supplier")),
        "date": _clean_date(parsed.get("date")),
        "products": lines,
    }


def extract_delivery_note(image):
    return DeliveryNoteOCRClient().extract(image)
