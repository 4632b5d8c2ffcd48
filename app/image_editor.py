"""Product image editing: crop, rotate and colour-adjust, then encode as JPEG.

The pipeline always runs in the same order:

1. extract the crop from the source, scaled from displayed to natural pixels
2. rotate the extracted pixels about the centre (the output keeps the crop size)
3. apply brightness, contrast and saturation, then flatten onto black
4. encode as JPEG at quality 90

Brightness, contrast and saturation use the CSS filter formulas, so 100 is
the identity for all three.
"""
import io
import logging
from typing import Callable, Optional, Tuple

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError
from pydantic import ValidationError

from .errors import NoCropAvailable, ValidationFailed
from .schemas import CropRegion, ImageEditState, PixelCrop

logger = logging.getLogger(__name__)

JPEG_QUALITY = 90
DEFAULT_CROP_WIDTH_PERCENT = 90

Size = Tuple[float, float]


def load_image(data: bytes) -> Image.Image:
    """Decodes an uploaded image, honouring its EXIF orientation like a browser does."""
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ValidationFailed("File is not a readable image") from e
    return ImageOps.exif_transpose(image)


def make_centered_aspect_crop(
    media_width: float,
    media_height: float,
    aspect: Optional[float] = None,
    width_percent: float = DEFAULT_CROP_WIDTH_PERCENT,
) -> CropRegion:
    """Centred crop, `width_percent` wide, locked to `aspect` (defaults to the media's own)."""
    aspect = aspect or media_width / media_height

    width_px = media_width * width_percent / 100
    height_px = width_px / aspect
    if height_px > media_height:
        height_px = media_height
        width_px = height_px * aspect

    width = width_px / media_width * 100
    height = height_px / media_height * 100
    return CropRegion(
        unit="%",
        x=max(0.0, (100 - width) / 2),
        y=max(0.0, (100 - height) / 2),
        width=width,
        height=height,
    )


def to_pixel_crop(region: CropRegion, media_width: float, media_height: float) -> PixelCrop:
    """Converts a crop to displayed-image pixels, clamped to the image bounds."""
    if region.unit == "%":
        x = region.x * media_width / 100
        y = region.y * media_height / 100
        width = region.width * media_width / 100
        height = region.height * media_height / 100
    else:
        x, y, width, height = region.x, region.y, region.width, region.height

    x = min(x, media_width)
    y = min(y, media_height)
    width = min(width, media_width - x)
    height = min(height, media_height - y)
    if width <= 0 or height <= 0:
        raise ValidationFailed("Crop lies outside the image", fields=["crop"])
    return PixelCrop(x=x, y=y, width=width, height=height)


def apply_color_filter(
    image: Image.Image,
    brightness: float = 100,
    contrast: float = 100,
    saturation: float = 100,
) -> Image.Image:
    """brightness() contrast() saturate() on the RGB channels of an RGBA image."""
    if brightness == contrast == saturation == 100:
        return image

    pixels = np.asarray(image.convert("RGBA"), dtype=np.float32) / 255.0
    rgb = pixels[..., :3]

    rgb = np.clip(rgb * (brightness / 100), 0.0, 1.0)
    rgb = np.clip((rgb - 0.5) * (contrast / 100) + 0.5, 0.0, 1.0)

    s = saturation / 100
    matrix = np.array([
        [0.213 + 0.787 * s, 0.715 - 0.715 * s, 0.072 - 0.072 * s],
        [0.213 - 0.213 * s, 0.715 + 0.285 * s, 0.072 - 0.072 * s],
        [0.213 - 0.213 * s, 0.715 - 0.715 * s, 0.072 + 0.928 * s],
    ], dtype=np.float32)
    rgb = np.clip(rgb @ matrix.T, 0.0, 1.0)

    out = np.concatenate([rgb, pixels[..., 3:]], axis=-1)
    return Image.fromarray(np.round(out * 255).astype(np.uint8))


def render_edited_image(
    image: Optional[Image.Image],
    crop: Optional[PixelCrop],
    displayed_size: Optional[Size],
    state: ImageEditState,
) -> Optional[bytes]:
    """
    Runs the edit pipeline.

    Args:
        image: source image at its natural size
        crop: finalized crop in displayed-image pixels
        displayed_size: size the image was shown at when the crop was drawn
        state: rotation and colour adjustments

    Returns:
        JPEG bytes sized to the crop, or None when there is nothing to render
    """
    if image is None or crop is None:
        return None

    natural_width, natural_height = image.size
    displayed_width, displayed_height = displayed_size or image.size
    if displayed_width <= 0 or displayed_height <= 0:
        return None

    out_width, out_height = int(round(crop.width)), int(round(crop.height))
    if out_width < 1 or out_height < 1:
        return None

    scale_x = natural_width / displayed_width
    scale_y = natural_height / displayed_height
    box = (
        crop.x * scale_x,
        crop.y * scale_y,
        min((crop.x + crop.width) * scale_x, natural_width),
        min((crop.y + crop.height) * scale_y, natural_height),
    )

    region = image.convert("RGBA").resize(
        (out_width, out_height), Image.Resampling.LANCZOS, box=box
    )

    if state.rotation != 0:
        # PIL turns counter-clockwise; the editor's rotation is clockwise
        region = region.rotate(
            -state.rotation,
            resample=Image.Resampling.BICUBIC,
            fillcolor=(0, 0, 0, 0),
        )

    region = apply_color_filter(region, state.brightness, state.contrast, state.saturation)

    flattened = Image.new("RGB", region.size, (0, 0, 0))
    flattened.paste(region, mask=region.getchannel("A"))

    buffer = io.BytesIO()
    flattened.save(buffer, format="JPEG", quality=JPEG_QUALITY)
    return buffer.getvalue()


class ImageEditSession:
    """Edit state of one open image editor.

    Created when the editor opens and thrown away when it closes; nothing here
    outlives the dialog.
    """

    def __init__(
        self,
        image: Optional[Image.Image],
        aspect: Optional[float] = None,
        displayed_size: Optional[Size] = None,
    ) -> None:
        self.image = image
        self.aspect = aspect
        self.displayed_size: Optional[Size] = None
        self.crop: Optional[CropRegion] = None
        self.completed_crop: Optional[PixelCrop] = None
        self.state = ImageEditState()
        if image is not None:
            self.on_image_load(displayed_size or image.size)

    @classmethod
    def from_bytes(cls, data: bytes, aspect: Optional[float] = None, displayed_size: Optional[Size] = None):
        return cls(load_image(data), aspect=aspect, displayed_size=displayed_size)

    def on_image_load(self, displayed_size: Size) -> None:
        """Starts from a centred crop 90% wide, locked to the requested aspect."""
        self.displayed_size = displayed_size
        width, height = displayed_size
        self.set_crop(make_centered_aspect_crop(width, height, self.aspect))
        self.complete_crop()

    def set_crop(self, region: CropRegion) -> None:
        self.crop = region

    def complete_crop(self, region: Optional[CropRegion] = None) -> PixelCrop:
        if region is not None:
            self.crop = region
        if self.crop is None or self.displayed_size is None:
            raise NoCropAvailable()
        width, height = self.displayed_size
        self.completed_crop = to_pixel_crop(self.crop, width, height)
        return self.completed_crop

    def clear_crop(self) -> None:
        self.crop = None
        self.completed_crop = None

    def adjust(self, **values: float) -> ImageEditState:
        """Updates rotation/brightness/contrast/saturation, rejecting out-of-range values."""
        unknown = sorted(set(values) - set(ImageEditState.model_fields))
        if unknown:
            raise ValidationFailed(f"Unknown adjustment: {', '.join(unknown)}", fields=unknown)
        try:
            self.state = ImageEditState(**{**self.state.model_dump(), **values})
        except ValidationError as e:
            fields = [str(err["loc"][0]) for err in e.errors() if err.get("loc")]
            raise ValidationFailed("Adjustment out of range", fields=fields) from e
        return self.state

    def reset_adjustments(self) -> ImageEditState:
        """Back to no rotation and neutral colours. The crop is kept."""
        self.state = ImageEditState()
        return self.state

    def render(self) -> Optional[bytes]:
        return render_edited_image(self.image, self.completed_crop, self.displayed_size, self.state)

    def save(self, on_save: Callable[[bytes], None]) -> bytes:
        blob = self.render()
        if blob is None:
            raise NoCropAvailable()
        on_save(blob)
        logger.info(f"✅ Image edited: {len(blob)} bytes")
        return blob

    def discard(self) -> None:
        self.image = None
        self.clear_crop()
        self.state = ImageEditState()
