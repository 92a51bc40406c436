import io
from dataclasses import dataclass
from typing import Optional

from PIL import Image


@dataclass
class CompressedImage:
    data: bytes
    width: Optional[int]
    height: Optional[int]
    format: Optional[str]


def _to_rgb(im: Image.Image) -> Image.Image:
    if im.mode in ("RGBA", "LA") or (im.mode == "P" and "transparency" in im.info):
        rgba = im.convert("RGBA")
        background = Image.new("RGB", rgba.size, (0, 0, 0))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    if im.mode != "RGB":
        return im.convert("RGB")
    return im


def compress_image_bytes(
    img_bytes: bytes,
    quality: int = 85,
    max_width: int = 1920,
    max_height: int = 1920,
) -> CompressedImage:
    """Fit the image inside max_width x max_height (never upscaling) and
    re-encode it as a progressive JPEG.

    Width, height and format describe the original image.
    """
    with Image.open(io.BytesIO(img_bytes)) as im:
        im_format = im.format.lower() if im.format else None
        width, height = im.size
        im.load()
        out = _to_rgb(im)
        if out.width > max_width or out.height > max_height:
            out.thumbnail((max_width, max_height), Image.Resampling.LANCZOS)
        buf = io.BytesIO()
        out.save(buf, format="JPEG", quality=quality, optimize=True, progressive=True)
        return CompressedImage(buf.getvalue(), width, height, im_format)
