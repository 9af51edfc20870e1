from __future__ import annotations

import csv

_BOM = "\ufeff"


def clean_value(raw: str) -> str:
    value = raw.strip()
    if value.startswith('"'):
        value = value[1:]
    if value.endswith('"'):
        value = value[:-1]
    return value.strip()


def _split_line(line: str) -> list[str]:
    return [clean_value(value) for value in next(csv.reader([line]), [])]


def parse_csv_lines(content: str) -> list[tuple[int, dict[str, str]]]:
    """Parse CSV text into `(line_number, row)` pairs.

    Parsing is line oriented: quoted values may contain commas and doubled
    quotes but never newlines. Blank lines are dropped, short rows are padded
    with empty strings and extra trailing values are ignored. Line numbers are
    1-based positions in the source, header included, so they still match the
    file when blank lines were skipped.
    """
    if content.startswith(_BOM):
        content = content[len(_BOM) :]

    numbered = [
        (number, line.rstrip("\r"))
        for number, line in enumerate(content.split("\n"), start=1)
        if line.strip()
    ]
    if len(numbered) < 2:
        return []

    headers = _split_line(numbered[0][1])
    rows: list[tuple[int, dict[str, str]]] = []
    for number, line in numbered[1:]:
        values = _split_line(line)
        if len(values) < len(headers):
            values.extend([""] * (len(headers) - len(values)))
        rows.append((number, dict(zip(headers, values))))
    return rows


def parse_csv(content: str) -> list[dict[str, str]]:
    return [row for _, row in parse_csv_lines(content)]
