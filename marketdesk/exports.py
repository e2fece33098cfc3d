"""
Market data exports: CSV, a rendered PNG table, and the same table as a PDF page.
"""

from __future__ import annotations

import csv
import io
from typing import Iterable, Sequence

from PIL import Image, ImageDraw, ImageFont

from marketdesk.records import Record

TABLE_COLUMNS = ("Category", "Date", "Item", "City", "Price")

# A4 at 150 dpi
A4_SIZE = (1240, 1754)
PDF_RESOLUTION = 150.0

_ROW_HEIGHT = 28
_PADDING = 8
_HEADER_FILL = (243, 244, 246)
_BORDER = (229, 231, 235)
_TEXT = (17, 24, 39)


def _format_price(price) -> str:
    if price is None:
        return "KSh "
    if isinstance(price, float) and price.is_integer():
        price = int(price)
    return f"KSh {price}"


def table_rows(records: Iterable[Record]) -> list[tuple[str, ...]]:
    rows = []
    for record in records:
        data = record.model_dump()
        rows.append(
            (
                str(data.get("category") or ""),
                str(data.get("date") or ""),
                str(data.get("item") or ""),
                str(data.get("city") or ""),
                _format_price(data.get("price")),
            )
        )
    return rows


def export_csv(records: Iterable[Record]) -> bytes:
    """Every persisted field, one row per record, header from the union of keys."""
    rows = [record.as_row() for record in records]
    fieldnames: list[str] = []
    for row in rows:
        for key in row:
            if key not in fieldnames:
                fieldnames.append(key)
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=fieldnames, lineterminator="\n")
    if fieldnames:
        writer.writeheader()
    for row in rows:
        writer.writerow(
            {k: ";".join(v) if isinstance(v, list) else v for k, v in row.items()}
        )
    return buffer.getvalue().encode("utf-8")


def render_table(rows: Sequence[Sequence[str]], columns: Sequence[str] = TABLE_COLUMNS) -> Image.Image:
    font = ImageFont.load_default()
    probe = ImageDraw.Draw(Image.new("RGB", (1, 1)))

    def text_width(text: str) -> int:
        left, _, right, _ = probe.textbbox((0, 0), text, font=font)
        return right - left

    widths = [text_width(name) for name in columns]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], text_width(cell))
    widths = [w + 2 * _PADDING for w in widths]

    width = sum(widths) + 1
    height = _ROW_HEIGHT * (len(rows) + 1) + 1
    image = Image.new("RGB", (width, height), "white")
    draw = ImageDraw.Draw(image)
    draw.rectangle((0, 0, width - 1, _ROW_HEIGHT), fill=_HEADER_FILL)

    for row_index, row in enumerate([tuple(columns), *rows]):
        top = row_index * _ROW_HEIGHT
        draw.line((0, top, width, top), fill=_BORDER)
        left = 0
        for col_index, cell in enumerate(row):
            draw.text((left + _PADDING, top + _PADDING), cell, fill=_TEXT, font=font)
            left += widths[col_index]
    draw.line((0, height - 1, width, height - 1), fill=_BORDER)
    return image


def export_png(records: Iterable[Record]) -> bytes:
    buffer = io.BytesIO()
    render_table(table_rows(records)).save(buffer, format="PNG")
    return buffer.getvalue()


def export_pdf(records: Iterable[Record]) -> bytes:
    """The rendered table placed on a portrait A4 page, scaled down to fit."""
    table = render_table(table_rows(records))
    page = Image.new("RGB", A4_SIZE, "white")
    margin = int(A4_SIZE[0] * 10 / 210)
    ratio = min(
        (A4_SIZE[0] - 2 * margin) / table.width,
        (A4_SIZE[1] - 2 * margin) / table.height,
        1.0,
    )
    if ratio < 1.0:
        table = table.resize(
            (max(int(table.width * ratio), 1), max(int(table.height * ratio), 1))
        )
    page.paste(table, (margin, margin))
    buffer = io.BytesIO()
    page.save(buffer, format="PDF", resolution=PDF_RESOLUTION)
    return buffer.getvalue()
