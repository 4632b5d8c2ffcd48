import io

import pytest
from PIL import Image

from app.errors import NoCropAvailable, ValidationFailed
from app.image_editor import (
    ImageEditSession,
    apply_color_filter,
    load_image,
    make_centered_aspect_crop,
    to_pixel_crop,
)
from app.schemas import CropRegion
from conftest import image_bytes


def decode(blob: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(blob))
    image.load()
    return image


def near(pixel, expected, tolerance=12):
    return all(abs(a - b) <= tolerance for a, b in zip(pixel, expected))


def test_rotated_brightened_default_crop_keeps_crop_size():
    session = ImageEditSession.from_bytes(image_bytes((400, 200)), displayed_size=(200, 100))

    session.adjust(rotation=90, brightness=120)
    output = decode(session.render())

    assert output.format == "JPEG"
    assert output.size == (180, 90)


def test_default_crop_is_centred_and_ninety_percent_wide():
    session = ImageEditSession.from_bytes(image_bytes((400, 200)), displayed_size=(200, 100))

    crop = session.completed_crop
    assert (crop.x, crop.y, crop.width, crop.height) == pytest.approx((10, 5, 180, 90))


def test_centred_crop_is_limited_by_height_for_wide_aspect():
    region = make_centered_aspect_crop(200, 100, aspect=1)

    assert region.width == pytest.approx(50)
    assert region.height == pytest.approx(100)
    assert region.x == pytest.approx(25)
    assert region.y == pytest.approx(0)


def test_percent_crop_is_clamped_to_image():
    crop = to_pixel_crop(CropRegion(unit="%", x=50, y=50, width=80, height=80), 200, 100)

    assert (crop.x, crop.y, crop.width, crop.height) == pytest.approx((100, 50, 100, 50))


def test_crop_outside_image_is_rejected():
    with pytest.raises(ValidationFailed):
        to_pixel_crop(CropRegion(unit="px", x=300, y=0, width=10, height=10), 200, 100)


def test_crop_is_scaled_from_displayed_to_natural_pixels():
    source = Image.new("RGB", (400, 200), (0, 0, 255))
    source.paste((255, 0, 0), (0, 0, 200, 200))
    buffer = io.BytesIO()
    source.save(buffer, format="PNG")

    session = ImageEditSession.from_bytes(buffer.getvalue(), displayed_size=(200, 100))
    session.complete_crop(CropRegion(unit="px", x=0, y=0, width=100, height=100))
    output = decode(session.render())

    assert output.size == (100, 100)
    assert near(output.getpixel((50, 50)), (255, 0, 0))


def test_rotation_leaves_uncovered_corners_black():
    session = ImageEditSession.from_bytes(image_bytes((400, 200)), displayed_size=(200, 100))

    session.adjust(rotation=90)
    output = decode(session.render())

    assert near(output.getpixel((90, 45)), (255, 255, 255))
    assert near(output.getpixel((2, 45)), (0, 0, 0))


def test_zero_brightness_is_black():
    session = ImageEditSession.from_bytes(image_bytes(color=(200, 120, 40)))

    session.adjust(brightness=0)
    output = decode(session.render())

    assert all(high <= 8 for _, high in output.getextrema())


def test_zero_saturation_is_grey():
    session = ImageEditSession.from_bytes(image_bytes(color=(220, 30, 30)))

    session.adjust(saturation=0)
    r, g, b = decode(session.render()).getpixel((50, 50))

    assert abs(r - g) <= 4 and abs(g - b) <= 4


def test_neutral_adjustments_keep_colours():
    session = ImageEditSession.from_bytes(image_bytes(color=(30, 160, 90)))

    output = decode(session.render())

    assert near(output.getpixel((60, 60)), (30, 160, 90))


def test_neutral_filter_returns_image_unchanged():
    image = Image.new("RGBA", (10, 10), (1, 2, 3, 255))

    assert apply_color_filter(image) is image


def test_reset_adjustments_keeps_crop():
    session = ImageEditSession.from_bytes(image_bytes((400, 200)))
    crop = session.complete_crop(CropRegion(unit="px", x=20, y=20, width=100, height=50))

    session.adjust(rotation=45, contrast=150)
    state = session.reset_adjustments()

    assert (state.rotation, state.brightness, state.contrast, state.saturation) == (0, 100, 100, 100)
    assert session.completed_crop == crop


def test_out_of_range_adjustment_is_rejected():
    session = ImageEditSession.from_bytes(image_bytes())

    with pytest.raises(ValidationFailed) as exc:
        session.adjust(brightness=250)

    assert exc.value.fields == ["brightness"]
    assert session.state.brightness == 100


def test_without_crop_there_is_nothing_to_save():
    session = ImageEditSession.from_bytes(image_bytes())
    session.clear_crop()
    saved = []

    assert session.render() is None
    with pytest.raises(NoCropAvailable):
        session.save(saved.append)
    assert saved == []


def test_without_image_render_is_none():
    assert ImageEditSession(None).render() is None


def test_save_hands_jpeg_to_callback():
    session = ImageEditSession.from_bytes(image_bytes())
    saved = []

    blob = session.save(saved.append)

    assert saved == [blob]
    assert decode(blob).format == "JPEG"


def test_discard_drops_edit_state():
    session = ImageEditSession.from_bytes(image_bytes())
    session.adjust(rotation=30)

    session.discard()

    assert session.image is None
    assert session.completed_crop is None
    assert session.state.rotation == 0


def test_unreadable_upload_is_rejected():
    with pytest.raises(ValidationFailed):
        load_image(b"definitely not an image")


def test_misspelled_adjustment_is_rejected():
    session = ImageEditSession.from_bytes(image_bytes())

    with pytest.raises(ValidationFailed) as exc:
        session.adjust(rotaton=90)

    assert exc.value.fields == ["rotaton"]
    assert session.state.rotation == 0
