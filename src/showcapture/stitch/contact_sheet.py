from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
import re
from typing import Sequence

from PIL import Image, UnidentifiedImageError


logger = logging.getLogger(__name__)


class StitchError(RuntimeError):
    pass


@dataclass(frozen=True)
class StitchResult:
    path: Path
    count: int


@dataclass(frozen=True)
class GridLayout:
    cols: int
    rows: int
    # (column, row) in cell units; half cells centre a short bottom row.
    positions: tuple[tuple[float, float], ...]


GRID_LAYOUTS: dict[int, GridLayout] = {
    2: GridLayout(2, 1, ((0, 0), (1, 0))),
    3: GridLayout(2, 2, ((0, 0), (1, 0), (0.5, 1))),
    4: GridLayout(2, 2, ((0, 0), (1, 0), (0, 1), (1, 1))),
    5: GridLayout(3, 2, ((0, 0), (1, 0), (2, 0), (0.5, 1), (1.5, 1))),
    6: GridLayout(3, 2, ((0, 0), (1, 0), (2, 0), (0, 1), (1, 1), (2, 1))),
}

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg")
PROCESSED_DIR_NAME = "Processed"

_GENERIC_FOLDER_NAMES = {"", ".", "..", "Desktop", "Pictures", "Documents"}
_DATE_RE = re.compile(r"(\d{8})")


def collect_images(folder: Path) -> list[Path]:
    images = [p for p in folder.iterdir() if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS]
    return sorted(images, key=lambda p: p.name.lower())


def contact_sheet_name(paths: Sequence[Path]) -> str:
    if not paths:
        return "stitched"

    folder_name = paths[0].parent.name
    if folder_name not in _GENERIC_FOLDER_NAMES and PROCESSED_DIR_NAME not in folder_name:
        return folder_name

    stem = paths[0].stem
    m = _DATE_RE.search(stem)
    if m:
        return f"{stem[:m.end()]}_processed{stem[m.end():]}"
    return f"{stem}_processed"


def background_for(count: int) -> tuple[int, int, int]:
    return (0, 0, 0) if count % 2 == 1 else (255, 255, 255)


def _load_rgb(path: Path) -> Image.Image:
    try:
        with Image.open(path) as im:
            return im.convert("RGB")
    except (UnidentifiedImageError, OSError) as exc:
        raise StitchError(f"cannot read image {path}: {exc}") from exc


def compose_contact_sheet(images: Sequence[Image.Image]) -> Image.Image:
    layout = GRID_LAYOUTS.get(len(images))
    if layout is None:
        raise StitchError(f"cannot stitch {len(images)} images; expected 2-6")

    cell_w = max(im.width for im in images)
    cell_h = max(im.height for im in images)
    canvas = Image.new("RGB", (cell_w * layout.cols, cell_h * layout.rows), background_for(len(images)))
    for im, (col, row) in zip(images, layout.positions):
        canvas.paste(im, (int(col * cell_w), int(row * cell_h)))
    return canvas


def stitch_images(paths: Sequence[Path], output_dir: Path | None = None, quality: int = 100) -> StitchResult:
    ordered = sorted(paths, key=lambda p: p.name.lower())
    count = len(ordered)
    if count not in GRID_LAYOUTS:
        raise StitchError(f"cannot stitch {count} images; expected 2-6")

    logger.info("stitching %s images: %s", count, ", ".join(p.name for p in ordered))
    images = [_load_rgb(p) for p in ordered]
    sheet = compose_contact_sheet(images)

    out_dir = output_dir if output_dir is not None else ordered[0].parent / PROCESSED_DIR_NAME
    out_dir.mkdir(parents=True, exist_ok=True)
    out_path = out_dir / f"{contact_sheet_name(ordered)}.jpg"
    try:
        sheet.save(out_path, "JPEG", quality=quality)
    except OSError as exc:
        raise StitchError(f"cannot write contact sheet {out_path}: {exc}") from exc

    logger.info("stitched %s images -> %s", count, out_path)
    return StitchResult(path=out_path, count=count)


class ContactSheetStitcher:
    def __init__(self, output_dir: Path | None = None, quality: int = 100) -> None:
        self.output_dir = output_dir
        self.quality = quality

    def __call__(self, folder: Path) -> StitchResult:
        return self.stitch_folder(folder)

    def stitch_folder(self, folder: Path) -> StitchResult:
        if not folder.is_dir():
            raise StitchError(f"not a folder: {folder}")
        return stitch_images(collect_images(folder), output_dir=self.output_dir, quality=self.quality)
