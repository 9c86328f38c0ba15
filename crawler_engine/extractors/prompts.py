"""
Prompt construction and response parsing shared by the extractors.
"""

import json
import re
from typing import Any

from crawler_engine.core.base import ExtractionConfig, ExtractionType


LANGUAGE_NAMES = {
    'en': 'English',
    'ru': 'Russian',
    'de': 'German',
    'fr': 'French',
    'es': 'Spanish',
    'it': 'Italian',
    'pt': 'Portuguese',
    'uk': 'Ukrainian',
    'zh-cn': 'Chinese',
    'ja': 'Japanese',
}

FENCED_JSON_RE = re.compile(r'```(?:json)?\s*([\s\S]*?)```')
ARRAY_RE = re.compile(r'\[[\s\S]*\]')
OBJECT_RE = re.compile(r'\{[\s\S]*\}')

PARSE_ERROR = 'Failed to parse JSON from response'


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get((code or 'en').lower(), code)


def build_system_prompt(config: ExtractionConfig) -> str:
    """
    Build the system prompt for an extraction type.

    Args:
        config: Extraction configuration

    Returns:
        System prompt text
    """
    language = language_name(config.output_language or 'en')

    if config.extraction_type == ExtractionType.SCHEMA and config.schema:
        return f"""You are an expert at extracting structured data from web content.

{config.prompt or 'Extract the data from the provided content.'}

IMPORTANT: Structure the answer with the following JSON schema:
```json
{json.dumps(config.schema, indent=2, ensure_ascii=False)}
```

Requirements:
1. Return ONLY valid JSON matching the schema
2. Do not add any text before or after the JSON
3. Use null or an empty array [] for missing data
4. Text values must be written in {language}
5. Keep original names and technical terms"""

    if config.extraction_type == ExtractionType.BLOCK:
        return f"""You are an expert at extracting content from web pages.

{config.prompt or 'Extract the main content elements as a structured list.'}

Requirements:
1. Return a JSON array of objects
2. Each object must contain: title, url (if present), description, metadata
3. Do not add any text before or after the JSON
4. Descriptions must be written in {language}
5. Keep original names and URLs

Response format:
```json
[
  {{
    "title": "Element title",
    "url": "https://...",
    "description": "Description",
    "metadata": {{}}
  }}
]
```"""

    return f"""You are an expert at analysing web content and extracting structured data.

{config.prompt or 'Analyse the content and extract every meaningful element.'}

Requirements:
1. Determine the content type (product list, articles, news and so on)
2. Extract every meaningful element in structured form
3. Return JSON with the fields: type, items, metadata
4. Descriptions must be written in {language}
5. Keep original names and URLs

Response format:
```json
{{
  "type": "content type",
  "items": [...],
  "metadata": {{
    "totalItems": 0,
    "source": "source description"
  }}
}}
```"""


def build_user_message(content: str) -> str:
    return f"Content to analyse:\n\n{content}"


def parse_json_response(response: str) -> Any:
    """
    Pull JSON out of model output.

    Handles fenced code blocks and JSON surrounded by prose. Output that
    cannot be parsed is returned as ``{"raw": ..., "parse_error": ...}``.
    """
    json_str = response.strip()

    fenced = FENCED_JSON_RE.search(json_str)
    if fenced:
        json_str = fenced.group(1).strip()

    try:
        return json.loads(json_str)
    except ValueError:
        pass

    # Whichever bracket opens first decides between array and object
    matches = [m for m in (ARRAY_RE.search(json_str), OBJECT_RE.search(json_str)) if m]
    if matches:
        json_str = min(matches, key=lambda m: m.start()).group(0)

    try:
        return json.loads(json_str)
    except ValueError:
        return {'raw': response, 'parse_error': PARSE_ERROR}
