"""Bootstrap the market workbook named in ``config.ini``.

Run as ``veggie-pos-setup`` (or ``python -m veggie_pos.setup_excel``) before
the first register session. Tests call :func:`create_master_workbook`
directly.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

from . import data_manager, log
from .data_manager import CONFIG_FILE_NAME, SHEET_COLUMNS


@dataclass(frozen=True)
class SetupSettings:
    """The two settings the bootstrap needs from ``config.ini``."""

    data_file: Path
    market_name: str


def load_settings(config_path: Path) -> SetupSettings:
    """Read the workbook location and market name from ``config_path``.

    A relative ``DataFile`` is anchored to the config file's folder, the same
    way the register resolves it.
    """

    config_path = Path(config_path).expanduser().resolve()
    settings = data_manager.parse_settings(data_manager.read_config(config_path), base_path=config_path.parent)
    return SetupSettings(data_file=settings.data_file, market_name=settings.market_name)


def create_master_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Write an empty workbook with one bold header row per sheet.

    Raises:
        FileExistsError: If ``destination`` exists and ``overwrite`` is off.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Workbook already exists: {destination}")

    data_manager.save_workbook(data_manager.new_workbook(sheet_columns), destination)
    log.info("Created workbook '%s' with sheets %s", destination, ", ".join(sheet_columns))
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    settings = load_settings(config_path)
    log.info("Bootstrapping workbook for '%s'", settings.market_name)
    return create_master_workbook(settings.data_file, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="veggie-pos-setup",
        description="Create the empty Veggie Market workbook named in config.ini.",
    )
    parser.add_argument(
        "--config",
        default=CONFIG_FILE_NAME,
        help=f"Configuration file to read (default: {CONFIG_FILE_NAME})",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Replace an existing workbook. All products, customers, and sales in it are lost.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for ``veggie-pos-setup``; returns a process exit code."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()
    print(f"Veggie Market setup, reading {config_path}")

    try:
        workbook_path = run_from_config(config_path, overwrite=args.force)
    except FileExistsError as exc:
        print(f"[ERROR] {exc}")
        print("Nothing was changed. Pass --force to start from an empty workbook.")
        return 1
    except (FileNotFoundError, KeyError) as exc:
        print(f"[ERROR] Configuration problem: {exc}")
        return 1
    except OSError as exc:
        print(f"[ERROR] Could not write the workbook: {exc}")
        return 1

    sheets = ", ".join(SHEET_COLUMNS)
    print(f"[OK] Workbook ready at '{workbook_path}' ({sheets}).")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
