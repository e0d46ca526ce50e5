"""Create, check and repair the Stockbook master workbook.

``stockbook-setup`` has three modes:

* create (default): write an empty workbook with one header row per managed
  sheet at the ``DataFile`` named in ``config.ini``.
* ``--check``: list the sheets and header rows that differ from
  :data:`~stockbook.constants.SHEET_COLUMNS` without changing anything.
* ``--repair``: add the sheets a workbook is missing, leaving existing sheets
  and their rows untouched.

All modes refuse to run against a config declaring another schema version.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import List, Mapping, Sequence
import sys

import openpyxl
from openpyxl.styles import Font
from openpyxl.workbook.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, SHEET_COLUMNS

CONFIG_FILE = "config.ini"

HEADER_FONT = Font(bold=True)


def _write_header(worksheet: Worksheet, columns: Sequence[str]) -> None:
    for column_index, column_name in enumerate(columns, start=1):
        cell = worksheet.cell(row=1, column=column_index, value=column_name)
        cell.font = HEADER_FONT


def layout_problems(
    workbook: Workbook,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
) -> List[str]:
    """Describe every managed sheet that is missing or has unexpected headers."""

    problems = []
    for sheet_name, columns in sheet_columns.items():
        if sheet_name not in workbook.sheetnames:
            problems.append(f"Missing sheet: {sheet_name}")
            continue
        found = list(next(workbook[sheet_name].iter_rows(min_row=1, max_row=1, values_only=True), ()))
        while found and found[-1] is None:
            found.pop()
        if found != list(columns):
            problems.append(f"Sheet {sheet_name} has headers {found}, expected {list(columns)}")
    return problems


def create_master_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create an empty master workbook with one bold header row per sheet.

    Raises:
        FileExistsError: If ``destination`` exists and ``overwrite`` is false.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing master workbook: {destination}")

    workbook = openpyxl.Workbook()
    workbook.remove(workbook.active)
    for sheet_name, columns in sheet_columns.items():
        _write_header(workbook.create_sheet(title=sheet_name), columns)

    data_manager.save_workbook(workbook, destination)
    log.info("Created master workbook '%s' with %d sheet(s)", destination, len(sheet_columns))
    return destination


def repair_master_workbook(
    path: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
) -> List[str]:
    """Append the managed sheets ``path`` lacks and return their names.

    Sheets that exist keep their rows; a sheet whose headers differ is not
    rewritten.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        ValueError: If an existing sheet has unexpected headers.
    """

    path = Path(path).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"Workbook not found: {path}")

    workbook = openpyxl.load_workbook(path)
    added = [name for name in sheet_columns if name not in workbook.sheetnames]
    mismatched = [problem for problem in layout_problems(workbook, sheet_columns) if not problem.startswith("Missing")]
    if mismatched:
        raise ValueError("; ".join(mismatched))

    for sheet_name in added:
        _write_header(workbook.create_sheet(title=sheet_name), sheet_columns[sheet_name])
    if added:
        data_manager.save_workbook(workbook, path)
        log.warning("Added missing sheet(s) to '%s': %s", path, ", ".join(added))
    return added


def load_settings(config_path: Path) -> data_manager.ConfigSettings:
    """Read ``config_path`` and check that it targets the current schema.

    Raises:
        ValueError: If ``SchemaVersion`` differs from the supported one.
    """

    config_path = Path(config_path).expanduser().resolve()
    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=config_path.parent)
    if settings.schema_version != EXPECTED_SCHEMA_VERSION:
        raise ValueError(
            f"Config declares schema {settings.schema_version}, this release writes {EXPECTED_SCHEMA_VERSION}"
        )
    return settings


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="stockbook-setup",
        description="Create, check or repair the Stockbook workbook named in config.ini.",
    )
    parser.add_argument("--config", default=CONFIG_FILE, help="Path to configuration file (default: config.ini)")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--force", action="store_true", help="Overwrite the workbook if it already exists.")
    mode.add_argument("--check", action="store_true", help="Report layout problems without changing anything.")
    mode.add_argument("--repair", action="store_true", help="Add missing sheets to an existing workbook.")
    return parser.parse_args(argv)


def _check(data_file: Path) -> int:
    problems = layout_problems(openpyxl.load_workbook(data_file))
    for problem in problems:
        print(f"[PROBLEM] {problem}")
    if problems:
        return 1
    print(f"[OK] '{data_file}' matches the expected layout.")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the ``stockbook-setup`` script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()
    print(f"Using configuration: {config_path}")

    try:
        settings = load_settings(config_path)
        if args.check:
            return _check(settings.data_file)
        if args.repair:
            added = repair_master_workbook(settings.data_file)
            print(f"[SUCCESS] Added sheet(s): {', '.join(added)}" if added else "[SUCCESS] Nothing to repair.")
            return 0
        output_path = create_master_workbook(settings.data_file, overwrite=args.force)
    except FileExistsError as exc:
        print(f"[ERROR] {exc}")
        print("Run with --force to overwrite or --repair to add missing sheets.")
        return 1
    except (FileNotFoundError, KeyError, ValueError) as exc:
        print(f"[ERROR] {exc}")
        return 1
    except OSError as exc:
        print(f"[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"[SUCCESS] Created master workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
