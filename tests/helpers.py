import base64
import io
from datetime import datetime, timezone

import numpy as np
from PIL import Image


def make_result(**overrides):
    result = {
        "composition": {
            "type": "rule of thirds",
            "lines": [
                {"startX": 33.3, "startY": 0, "endX": 33.3, "endY": 100, "color": "#ff0000"},
            ],
            "description": "Subject sits on the left third.",
        },
        "lighting": "Soft side light.",
        "color": "Warm palette.",
        "subject": "A lone tree.",
        "perspective": "Wide shot, eye level.",
    }
    result.update(overrides)
    return result


def make_data_url(width=800, height=600, fmt="PNG"):
    # Noise, so PNG cannot compress it away.
    pixels = np.random.default_rng(0).integers(0, 256, (height, width, 3), dtype=np.uint8)
    buf = io.BytesIO()
    Image.fromarray(pixels, "RGB").save(buf, format=fmt)
    mime = "png" if fmt == "PNG" else "jpeg"
    return f"data:image/{mime};base64," + base64.b64encode(buf.getvalue()).decode("ascii")


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, delta):
        self.now = self.now + delta
