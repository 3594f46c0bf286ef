"""Field and image extraction shared by every site scraper."""

from .fields import FieldExtractor, clean_number, normalize_vin, parse_title
from .images import ImageResolver, normalize_gallery

__all__ = [
    "FieldExtractor",
    "ImageResolver",
    "clean_number",
    "normalize_gallery",
    "normalize_vin",
    "parse_title",
]
