from .contact_sheet import (
    GRID_LAYOUTS,
    ContactSheetStitcher,
    StitchError,
    StitchResult,
    collect_images,
    compose_contact_sheet,
    contact_sheet_name,
    stitch_images,
)

__all__ = [
    "GRID_LAYOUTS",
    "ContactSheetStitcher",
    "StitchError",
    "StitchResult",
    "collect_images",
    "compose_contact_sheet",
    "contact_sheet_name",
    "stitch_images",
]
