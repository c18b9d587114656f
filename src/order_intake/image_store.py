"""
Line Item Photo Storage
Downscales uploaded product photos and stores them on local disk
"""
import io
import os
import uuid
from datetime import datetime

from PIL import Image, UnidentifiedImageError

import config
from .errors import ImageStoreError


class LocalImageStore:
    """Image storage collaborator: compress to JPEG, return the saved path"""

    def __init__(self, folder: str = None, max_width: int = None, quality: int = None):
        self.folder = folder or config.IMAGE_FOLDER
        self.max_width = max_width or config.IMAGE_MAX_WIDTH
        self.quality = quality or config.IMAGE_JPEG_QUALITY
        os.makedirs(self.folder, exist_ok=True)

    def _compress(self, data: bytes) -> bytes:
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise ImageStoreError(f"Not a readable image: {e}")

        if image.mode not in ('RGB', 'L'):
            image = image.convert('RGB')

        if image.width > self.max_width:
            ratio = self.max_width / float(image.width)
            image = image.resize((self.max_width, max(1, int(image.height * ratio))), Image.LANCZOS)

        out = io.BytesIO()
        image.save(out, format='JPEG', quality=self.quality, optimize=True)
        return out.getvalue()

    def store(self, data: bytes, filename: str = "") -> str:
        """
        Save a photo for a line item

        Args:
            data: Raw image bytes as uploaded
            filename: Original file name (used only as a readable prefix)

        Returns:
            Absolute path of the stored JPEG
        """
        if not data:
            raise ImageStoreError("Empty image upload")

        compressed = self._compress(data)
        stem = os.path.splitext(os.path.basename(filename or ''))[0][:40] or 'item'
        name = f"{datetime.now().strftime('%Y%m%d_%H%M%S')}_{stem}_{uuid.uuid4().hex[:8]}.jpg"
        path = os.path.join(self.folder, name)

        try:
            with open(path, 'wb') as f:
                f.write(compressed)
        except OSError as e:
            raise ImageStoreError(f"Could not save image: {e}")

        print(f"[IMAGE_STORE] Saved {len(data) // 1024}KB upload as {name} ({len(compressed) // 1024}KB)")
        return os.path.abspath(path)
