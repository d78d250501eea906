# onecount/gemini_ocr.py
import io
import json
import time
from typing import Any, Dict

import PIL.Image
from google import genai  # Main genai module
from google.genai import types  # For type definitions like GenerateContentConfig
from loguru import logger
from pydantic import ValidationError

from .config import get_gemini_config
from .models import ParsedItem, ParsedReceipt
from .split_logic import clean_and_convert_number


class AnalysisError(Exception):
    """Receipt analysis failed: no key, network, empty answer or unreadable payload."""


def create_response_schema() -> Dict[str, Any]:
    """
    Flattened JSON schema for Gemini structured output.
    Plain dict instead of Pydantic model_json_schema() to avoid $ref/$defs.
    """
    return {
        "type": "object",
        "properties": {
            "items": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string", "description": "Name of the item"},
                        "price": {"type": "number", "description": "Price of the item"}
                    },
                    "required": ["name", "price"]
                }
            },
            "tip": {"type": "number", "description": "Total tip amount found on receipt"},
            "merchantName": {"type": "string", "description": "Name of the store or merchant"},
            "date": {"type": "string", "description": "Date of receipt"}
        },
        "required": ["items"]
    }


def generate_gemini_prompt() -> str:
    return ("Analyze this receipt image. Extract all purchased items with their individual prices. "
            "Extract the total tip if explicitly stated. Do not extract tax. "
            "Also extract the merchant/store name and the date of the receipt (YYYY-MM-DD format if possible). "
            "If multiple people are listed, ignore the people and just list the items. Ensure prices are numbers.")


def parse_analysis_response(text: str | None) -> ParsedReceipt:
    if not text:
        raise AnalysisError("No response from Gemini")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise AnalysisError(f"Gemini returned invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise AnalysisError("Gemini returned an unexpected payload.")

    try:
        items = [
            ParsedItem(name=str(raw.get("name") or "Unknown Item"),
                       price=clean_and_convert_number(raw.get("price")) or 0.0)
            for raw in data.get("items") or []
            if isinstance(raw, dict)
        ]
        return ParsedReceipt(
            items=items,
            tip=clean_and_convert_number(data.get("tip")) or 0.0,
            merchant_name=data.get("merchantName") or None,
            date=data.get("date") or None,
        )
    except ValidationError as e:
        raise AnalysisError(f"Gemini payload failed validation: {e}") from e


async def analyze_receipt(image_bytes: bytes) -> ParsedReceipt:
    start_time = time.time()
    GEMINI_API_KEY, MODEL_NAME = get_gemini_config()
    if not GEMINI_API_KEY:
        raise AnalysisError("GEMINI_API_KEY environment variable not set.")

    try:
        img = PIL.Image.open(io.BytesIO(image_bytes))
        client = genai.Client(api_key=GEMINI_API_KEY)
        config_obj = types.GenerateContentConfig(
            response_mime_type="application/json",
            response_schema=create_response_schema(),
            temperature=0.1
        )

        logger.info(f"Sending receipt analysis request to Gemini ({MODEL_NAME})...")
        response = await client.aio.models.generate_content(
            model=MODEL_NAME,
            contents=[generate_gemini_prompt(), img],
            config=config_obj,
        )
        logger.info(f"Gemini API response received in {time.time() - start_time:.2f} seconds.")
    except Exception as e:
        logger.error(f"An error occurred calling Gemini API: {e}")
        raise AnalysisError(f"Gemini API call failed: {e}") from e

    parsed = parse_analysis_response(response.text)
    logger.info(f"Gemini found {len(parsed.items)} item(s), tip {parsed.tip}.")
    return parsed
