"""
Text exports for analysis results: CSV, JSON, Markdown and HTML reports.
"""

from __future__ import annotations

import html
import json
import re
from datetime import datetime
from typing import Any, Dict, List, Optional


def _format_key(key: str) -> str:
    """``shannon_entropy`` / ``shannonEntropy`` -> ``Shannon entropy``."""
    spaced = re.sub(r"([A-Z])", r" \1", key).replace("_", " ").strip()
    return spaced[:1].upper() + spaced[1:]


def _format_value(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.4f}"
    return str(value)


def to_csv(records: List[Dict[str, Any]]) -> str:
    """Records to CSV using the first record's keys as header.

    String values containing commas are double-quoted.
    """
    if not records:
        return ""
    headers = list(records[0].keys())

    def cell(value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, str) and "," in value:
            return '"' + value.replace('"', '""') + '"'
        return str(value)

    rows = [",".join(headers)]
    rows.extend(",".join(cell(r.get(h)) for h in headers) for r in records)
    return "\n".join(rows)


def to_json(data: Any) -> str:
    return json.dumps(data, indent=2, default=str)


def to_markdown(title: str, metrics: Dict[str, Any], generated: Optional[datetime] = None) -> str:
    generated = generated or datetime.now()
    lines = [
        f"# {title}",
        "",
        f"Generated: {generated.strftime('%Y-%m-%d %H:%M:%S')}",
        "",
        "## Metrics",
        "",
    ]
    lines.extend(f"- **{_format_key(k)}**: {_format_value(v)}" for k, v in metrics.items())
    return "\n".join(lines) + "\n"


_HTML_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <title>{title}</title>
  <style>
    body {{ font-family: Arial, sans-serif; max-width: 1200px; margin: 0 auto; padding: 20px; }}
    h1 {{ border-bottom: 2px solid #007bff; padding-bottom: 10px; }}
    .metric {{ margin: 10px 0; padding: 8px; border-left: 3px solid #007bff; }}
    .metric-name {{ font-weight: bold; }}
  </style>
</head>
<body>
  <h1>{title}</h1>
  <p>Generated: {generated}</p>
{content}
</body>
</html>
"""


def to_html(title: str, metrics: Dict[str, Any], generated: Optional[datetime] = None) -> str:
    generated = generated or datetime.now()
    content = "\n".join(
        f'  <div class="metric"><span class="metric-name">{html.escape(_format_key(k))}</span>: '
        f'<span class="metric-value">{html.escape(_format_value(v))}</span></div>'
        for k, v in metrics.items()
    )
    return _HTML_TEMPLATE.format(
        title=html.escape(title),
        generated=generated.strftime("%Y-%m-%d %H:%M:%S"),
        content=content,
    )


EXPORT_FORMATS = {
    "csv": ("text/csv", "csv"),
    "json": ("application/json", "json"),
    "markdown": ("text/markdown", "md"),
    "html": ("text/html", "html"),
}
