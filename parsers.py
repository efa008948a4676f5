import csv
import io
import logging
import math
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import xmltodict
from bs4 import BeautifulSoup
from bson import json_util
from PyPDF2 import PdfReader

from etl import normalize_scalar

logger = logging.getLogger(__name__)

SUPPORTED_CONTENT_TYPES = ("json", "csv", "xml", "html", "text", "pdf")


class UnsupportedContentType(Exception):
    pass


# ---------- Content type detection ----------

_EXTENSIONS = {
    ".json": "json",
    ".csv": "csv",
    ".xml": "xml",
    ".html": "html",
    ".htm": "html",
    ".txt": "text",
    ".md": "text",
    ".pdf": "pdf",
}


def detect_content_type(filename: str, text: str = "") -> str:
    """
    Best-effort guess based on file extension, then a snippet of content.
    """
    name_lower = (filename or "").lower()
    for ext, content_type in _EXTENSIONS.items():
        if name_lower.endswith(ext):
            return content_type

    sniff = text.lstrip()[:500]
    if sniff.startswith("%PDF"):
        return "pdf"
    if sniff.startswith("{") or sniff.startswith("["):
        return "json"
    if "<html" in sniff.lower():
        return "html"
    if sniff.startswith("<?xml") or (sniff.startswith("<") and ("</" in sniff or "/>" in sniff)):
        return "xml"

    first_lines = [line for line in sniff.splitlines() if line.strip()][:3]
    if len(first_lines) >= 2 and all("," in line for line in first_lines):
        return "csv"

    return "text"


# ---------- Cell cleaning (CSV / HTML tables) ----------

_NUMBER = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}([T ][\d:.]+)?(Z|[+-]\d{2}:?\d{2})?$")


def clean_value(value: Any) -> Any:
    """
    Turn a raw text cell into a typed value:
    blank -> None, "true"/"false" -> bool, "1,234.5" -> 1234.5,
    "2024-01-31" -> "2024-01-31T00:00:00.000Z", anything else -> trimmed str.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        return normalize_scalar(value)

    value = value.strip()
    if not value:
        return None

    lower = value.lower()
    if lower == "true":
        return True
    if lower == "false":
        return False

    num_str = value.replace(",", "")
    if _NUMBER.match(num_str):
        number = float(num_str)
        if math.isfinite(number):
            if re.match(r"^[+-]?\d+$", num_str):
                return int(num_str)
            return number

    if _ISO_DATE.match(value):
        try:
            return normalize_scalar(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            pass

    return value


def rows_from_table(table: List[List[Any]]) -> List[Dict[str, Any]]:
    """
    Header row + data rows -> list of records. Blank headers become col_<i>;
    rows with every cell empty are dropped.
    """
    if not table:
        return []

    headers = [
        str(h).strip() if h is not None and str(h).strip() else f"col_{i}"
        for i, h in enumerate(table[0])
    ]

    records: List[Dict[str, Any]] = []
    for raw in table[1:]:
        record = {
            header: clean_value(raw[i] if i < len(raw) else None)
            for i, header in enumerate(headers)
        }
        if any(v is not None for v in record.values()):
            records.append(record)
    return records


# ---------- Per-format parsers ----------

def parse_json(content: str) -> List[Dict[str, Any]]:
    """
    Accepts plain JSON or MongoDB Extended JSON ({"$oid": ...}, {"$date": ...}).
    """
    data = json_util.loads(content)
    if isinstance(data, dict):
        return [data]
    if isinstance(data, list):
        return [item if isinstance(item, dict) else {"value": item} for item in data]
    return [{"value": data}]


def parse_csv(content: str) -> List[Dict[str, Any]]:
    reader = csv.reader(io.StringIO(content))
    return rows_from_table([row for row in reader])


def _find_records(node: Any) -> Optional[List[Dict[str, Any]]]:
    """First list of objects found walking the parsed XML tree."""
    if isinstance(node, list):
        if node and all(isinstance(item, dict) for item in node):
            return node
        for item in node:
            found = _find_records(item)
            if found:
                return found
    elif isinstance(node, dict):
        for value in node.values():
            found = _find_records(value)
            if found:
                return found
    return None


def parse_xml(content: str) -> List[Dict[str, Any]]:
    """
    Converts XML -> nested dict using xmltodict, then picks out the
    repeated element (e.g. <orders><order/>...</orders>) as rows.
    """
    parsed = _clean_tree(xmltodict.parse(content))
    records = _find_records(parsed)
    if records:
        return records

    # single root element: use its content as the one document
    if len(parsed) == 1:
        root = next(iter(parsed.values()))
        if isinstance(root, dict):
            return [root]
    return [parsed]


def _clean_tree(node: Any) -> Any:
    # xmltodict yields only strings at the leaves
    if isinstance(node, dict):
        return {k: _clean_tree(v) for k, v in node.items()}
    if isinstance(node, list):
        return [_clean_tree(v) for v in node]
    return clean_value(node)


def parse_html(content: str) -> List[Dict[str, Any]]:
    """
    Rows of the first <table>, or a one-row page summary when there is none.
    """
    soup = BeautifulSoup(content, "lxml")

    table = soup.find("table")
    if table is not None:
        grid: List[List[str]] = []
        for tr in table.find_all("tr"):
            cells = tr.find_all(["th", "td"])
            if cells:
                grid.append([c.get_text(strip=True) for c in cells])
        records = rows_from_table(grid)
        if records:
            return records

    meta: Dict[str, Any] = {}
    for tag in soup.find_all("meta"):
        name = tag.get("name") or tag.get("property")
        content_val = tag.get("content")
        if name and content_val:
            meta[name] = content_val

    return [
        {
            "title": soup.title.string if soup.title else None,
            "meta": meta,
            "headings": [h.get_text(strip=True) for h in soup.find_all(["h1", "h2", "h3"])],
            "link_count": len(soup.find_all("a", href=True)),
            "text_snippet": soup.get_text(separator=" ", strip=True)[:2000],  # avoid huge text
        }
    ]


def parse_text(content: str) -> List[Dict[str, Any]]:
    paragraphs = [p.strip() for p in re.split(r"\n\s*\n", content) if p.strip()]
    return [{"paragraph": i + 1, "text": p} for i, p in enumerate(paragraphs)]


def parse_pdf(file_bytes: bytes) -> List[Dict[str, Any]]:
    reader = PdfReader(io.BytesIO(file_bytes))
    docs: List[Dict[str, Any]] = []
    for i, page in enumerate(reader.pages):
        docs.append({"page": i + 1, "text": (page.extract_text() or "").strip()})
    return docs


# ---------- Entry point ----------

def parse_documents(
    filename: str,
    file_bytes: bytes,
    content_type: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Main entry point: uploaded file -> list of raw documents.

    Supported values for `content_type` (auto-detected when omitted):
    - "json"  (plain or Extended JSON)
    - "csv"
    - "xml"
    - "html"
    - "text"
    - "pdf"
    """
    if content_type:
        ct = content_type.lower()
        if ct not in SUPPORTED_CONTENT_TYPES:
            raise UnsupportedContentType(f"Unsupported content_type: {content_type}")
    else:
        ct = "pdf" if file_bytes[:4] == b"%PDF" else None

    if ct == "pdf":
        docs = parse_pdf(file_bytes)
    else:
        text = file_bytes.decode("utf-8-sig", errors="ignore")
        ct = ct or detect_content_type(filename, text)
        if ct == "pdf":
            docs = parse_pdf(file_bytes)
        elif ct == "json":
            docs = parse_json(text)
        elif ct == "csv":
            docs = parse_csv(text)
        elif ct == "xml":
            docs = parse_xml(text)
        elif ct == "html":
            docs = parse_html(text)
        else:
            docs = parse_text(text)

    logger.info("Parsed %s as %s: %d documents", filename, ct, len(docs))
    return docs
