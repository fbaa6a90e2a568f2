import base64
import io
import logging

import cv2
import numpy as np
from PIL import Image

from config import THUMBNAIL_JPEG_QUALITY, THUMBNAIL_MAX_WIDTH

logger = logging.getLogger(__name__)


def decode_base64_image(data_url: str) -> np.ndarray:
    """
    Decode a 'data:image/png;base64,...' URL (or bare base64) into a BGR
    OpenCV image.
    """
    encoded = data_url.split(",", 1)[1] if data_url.startswith("data:") else data_url
    img_bytes = base64.b64decode(encoded)
    image = Image.open(io.BytesIO(img_bytes)).convert("RGB")
    return cv2.cvtColor(np.array(image), cv2.COLOR_RGB2BGR)


def encode_jpeg_data_url(img_bgr: np.ndarray, quality: int) -> str:
    ok, buf = cv2.imencode(".jpg", img_bgr, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
    if not ok:
        raise ValueError("JPEG encoding failed")
    return "data:image/jpeg;base64," + base64.b64encode(buf.tobytes()).decode("ascii")


def downscale(img_bgr: np.ndarray, max_width: int) -> np.ndarray:
    """Shrink to ``max_width`` keeping the aspect ratio; never enlarge."""
    height, width = img_bgr.shape[:2]
    if width <= max_width:
        return img_bgr
    new_height = max(1, round(height * max_width / width))
    return cv2.resize(img_bgr, (max_width, new_height), interpolation=cv2.INTER_AREA)


def compress_image(
    data_url: str,
    max_width: int = THUMBNAIL_MAX_WIDTH,
    quality: int = THUMBNAIL_JPEG_QUALITY,
) -> str:
    """
    Turn an image data URL into a smaller JPEG thumbnail data URL.

    Anything that goes wrong (empty payload, not an image, codec error)
    returns the input unchanged; a missing thumbnail must never block
    saving the record.
    """
    if not data_url:
        return data_url
    try:
        img = decode_base64_image(data_url)
        return encode_jpeg_data_url(downscale(img, max_width), quality)
    except Exception as exc:
        logger.debug("Image compression failed, keeping original payload: %s", exc)
        return data_url
