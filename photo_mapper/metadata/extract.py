import logging
from dataclasses import dataclass
from pathlib import Path
from datetime import datetime
from typing import Optional, Any

import exifread
from PIL import Image, UnidentifiedImageError
from PIL.ExifTags import GPS, IFD

from .. import config


@dataclass
class LocationMetadata:
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    altitude: Optional[float] = None
    captured_at: Optional[datetime] = None

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None


def _ratio_to_float(r: Any) -> float:
    """Accepts exifread Ratio, PIL IFDRational, (num, den) tuples or plain numbers."""
    if hasattr(r, "num") and hasattr(r, "den"):
        return float(r.num) / float(r.den)
    if isinstance(r, tuple):
        num, den = r
        return float(num) / float(den)
    return float(r)


def _dms_to_degrees(values) -> float:
    """Convert DMS iterable (1 to 3 parts) to decimal degrees."""
    parts = [_ratio_to_float(v) for v in values]
    while len(parts) < 3:
        parts.append(0.0)
    d, m, s = parts[:3]
    return d + m / 60.0 + s / 3600.0


def _ref_letter(values) -> str:
    """exifread reports ASCII refs as a str, some writers as a one-item list."""
    if isinstance(values, (list, tuple)):
        values = values[0] if values else ""
    return str(values).strip().upper()[:1]


class MetadataExtractor:
    """
    Reads GPS position and capture time from image files.

    Strategies:
      - 'exifread' first (fast, Python-native, handles RAW containers).
      - Pillow as a fallback for formats exifread cannot parse (PNG, WebP).
    """

    def get_location_metadata(self, path: Path) -> LocationMetadata:
        """
        Extracts (latitude, longitude, altitude, capture time).
        Missing or unreadable tags leave the corresponding field as None.
        """
        meta = self._from_exifread(path)
        if meta.has_location:
            return meta

        fallback = self._from_pillow(path)
        if fallback.has_location:
            if fallback.captured_at is None:
                fallback.captured_at = meta.captured_at
            return fallback

        return meta

    # --- Internal Extraction Helpers ---

    def _from_exifread(self, path: Path) -> LocationMetadata:
        try:
            with path.open('rb') as f:
                # details=False skips makernotes and thumbnails
                tags = exifread.process_file(f, details=False)
        except Exception as e:
            logging.debug(f"ExifRead failed for {path}: {e}")
            return LocationMetadata()

        meta = LocationMetadata(captured_at=self._parse_exif_date(tags))
        coords = self._gps_from_exifread_tags(tags)
        if coords:
            meta.latitude, meta.longitude, meta.altitude = coords
        return meta

    def _gps_from_exifread_tags(self, tags) -> Optional[tuple]:
        lat_tag = tags.get("GPS GPSLatitude")
        lat_ref_tag = tags.get("GPS GPSLatitudeRef")
        lon_tag = tags.get("GPS GPSLongitude")
        lon_ref_tag = tags.get("GPS GPSLongitudeRef")

        if not (lat_tag and lon_tag):
            return None

        try:
            lat = _dms_to_degrees(lat_tag.values)
            lon = _dms_to_degrees(lon_tag.values)
        except (ValueError, ZeroDivisionError, TypeError) as e:
            logging.debug(f"Unreadable GPS tags: {e}")
            return None

        if lat_ref_tag and _ref_letter(lat_ref_tag.values) == "S":
            lat = -lat
        if lon_ref_tag and _ref_letter(lon_ref_tag.values) == "W":
            lon = -lon

        alt = None
        alt_tag = tags.get("GPS GPSAltitude")
        if alt_tag:
            try:
                alt = _ratio_to_float(alt_tag.values[0])
                # AltitudeRef 1 means below sea level
                ref = tags.get("GPS GPSAltitudeRef")
                if ref and str(ref.values[0]) == "1":
                    alt = -alt
            except (ValueError, ZeroDivisionError, TypeError, IndexError):
                alt = None

        return lat, lon, alt

    def _from_pillow(self, path: Path) -> LocationMetadata:
        try:
            with Image.open(path) as im:
                exif = im.getexif()
                gps = exif.get_ifd(IFD.GPSInfo)
                dt_raw = exif.get_ifd(IFD.Exif).get(0x9003) or exif.get(0x0132)
        except (UnidentifiedImageError, OSError) as e:
            logging.debug(f"Pillow could not read {path}: {e}")
            return LocationMetadata()

        meta = LocationMetadata(captured_at=self._parse_exif_string(str(dt_raw)) if dt_raw else None)
        if GPS.GPSLatitude not in gps or GPS.GPSLongitude not in gps:
            return meta

        try:
            lat = _dms_to_degrees(gps[GPS.GPSLatitude])
            lon = _dms_to_degrees(gps[GPS.GPSLongitude])
        except (ValueError, ZeroDivisionError, TypeError) as e:
            logging.debug(f"Unreadable GPS IFD in {path}: {e}")
            return meta

        if str(gps.get(GPS.GPSLatitudeRef, "N")).upper().startswith("S"):
            lat = -lat
        if str(gps.get(GPS.GPSLongitudeRef, "E")).upper().startswith("W"):
            lon = -lon

        meta.latitude, meta.longitude = lat, lon
        if GPS.GPSAltitude in gps:
            try:
                alt = _ratio_to_float(gps[GPS.GPSAltitude])
                if gps.get(GPS.GPSAltitudeRef) in (1, b"\x01"):
                    alt = -alt
                meta.altitude = alt
            except (ValueError, ZeroDivisionError, TypeError):
                pass
        return meta

    def _parse_exif_date(self, tags) -> Optional[datetime]:
        """Helper to parse standard EXIF date strings from exifread."""
        for tag in config.DATE_TAGS:
            if tag in tags:
                dt = self._parse_exif_string(str(tags[tag]))
                if dt:
                    return dt
        return None

    def _parse_exif_string(self, dt_str: str) -> Optional[datetime]:
        # EXIF format is usually "YYYY:MM:DD HH:MM:SS"
        try:
            return datetime.strptime(dt_str.strip().replace(':', '-', 2), "%Y-%m-%d %H:%M:%S")
        except ValueError:
            return None
