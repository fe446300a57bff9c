import base64
from io import BytesIO

import qrcode
import qrcode.image.svg
from qrcode.constants import ERROR_CORRECT_H

FORMATS = ("png", "svg", "data-url")
BORDER = 2


def _make(data: str, size: int, image_factory=None):
    qr = qrcode.QRCode(
        box_size=1, border=BORDER,
        error_correction=ERROR_CORRECT_H,
        image_factory=image_factory,
    )
    qr.add_data(data)
    qr.make(fit=True)
    # Pick the box size that gets closest to the requested pixel width
    qr.box_size = max(1, size // (qr.modules_count + 2 * BORDER))
    return qr.make_image() if image_factory else qr.make_image(fill_color="black", back_color="white")


def generate_qr_png(data: str, size: int = 200) -> bytes:
    img = _make(data, size)
    buf = BytesIO()
    img.save(buf)
    return buf.getvalue()


def generate_qr_svg(data: str, size: int = 200) -> str:
    img = _make(data, size, image_factory=qrcode.image.svg.SvgPathImage)
    root = img.get_image()
    # qrcode sizes SVGs in mm; its viewBox keeps the drawing, width/height go to pixels
    root.set("width", str(size))
    root.set("height", str(size))
    return img.to_string(encoding="unicode")


def generate_qr_base64(data: str, size: int = 200) -> str:
    return base64.b64encode(generate_qr_png(data, size)).decode()


def generate_qr_data_url(data: str, size: int = 200) -> str:
    return f"data:image/png;base64,{generate_qr_base64(data, size)}"
