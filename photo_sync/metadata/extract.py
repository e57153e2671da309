import logging
from pathlib import Path
from datetime import datetime
from typing import Optional

import exifread
from pymediainfo import MediaInfo

from .. import config
from ..models import MediaType


class CaptureDateExtractor:
    """
    Finds the moment a photo or video was taken.

    Strategies:
      - Images: 'exifread' (fast, Python-native).
      - Video: 'pymediainfo' (needs the libmediainfo shared library).
    Callers fall back to the file mtime when nothing is found.
    """

    # Priority: Original -> Encoded -> Tagged
    VIDEO_DATE_FIELDS = ("recorded_date", "encoded_date", "tagged_date")

    def capture_date(self, path: Path, media_type: MediaType) -> Optional[datetime]:
        if media_type == MediaType.IMAGE:
            return self.get_image_date(path)
        if media_type == MediaType.VIDEO:
            return self.get_video_date(path)
        return None

    def get_image_date(self, path: Path) -> Optional[datetime]:
        try:
            with path.open('rb') as f:
                # details=False speeds up processing significantly
                tags = exifread.process_file(f, details=False)
            return self._parse_exif_date(tags)
        except Exception as e:
            logging.debug(f"ExifRead failed for {path}: {e}")
            return None

    def get_video_date(self, path: Path) -> Optional[datetime]:
        try:
            mi = MediaInfo.parse(str(path))
        except Exception as e:
            # Also raised when libmediainfo is not installed
            logging.debug(f"MediaInfo failed for {path}: {e}")
            return None

        for track in mi.tracks:
            if track.track_type != "General":
                continue
            for field in self.VIDEO_DATE_FIELDS:
                val = getattr(track, field, None)
                if val:
                    dt = self._parse_flexible_date(str(val))
                    if dt:
                        return dt
        return None

    def _parse_exif_date(self, tags) -> Optional[datetime]:
        """Helper to parse standard EXIF date strings from exifread."""
        for tag in config.DATE_TAGS:
            if tag in tags:
                try:
                    # EXIF format is usually "YYYY:MM:DD HH:MM:SS"
                    dt_str = str(tags[tag]).replace(':', '-', 2)
                    return datetime.strptime(dt_str, "%Y-%m-%d %H:%M:%S")
                except ValueError:
                    continue
        return None

    def _parse_flexible_date(self, dt_str: str) -> Optional[datetime]:
        """
        Handles ISO and EXIF-style dates, with or without a UTC marker.
        Returns a naive datetime object.
        """
        clean = dt_str.replace("UTC", "").strip()
        if not clean:
            return None

        try:
            return datetime.fromisoformat(clean).replace(tzinfo=None)
        except ValueError:
            pass

        try:
            clean_exif = clean.replace(":", "-", 2)
            # strptime does not accept sub-second precision here
            if "." in clean_exif:
                clean_exif = clean_exif.split(".")[0]
            return datetime.strptime(clean_exif, "%Y-%m-%d %H:%M:%S")
        except ValueError:
            return None
