"""
Local Raster Processor (High-Fidelity mode)

Deterministic, no network: normalize the upload to RGBA, cut the product
out of its background, flatten it onto a solid backdrop and encode as PNG.
"""

import io
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from PIL import Image, ImageColor, ImageOps, UnidentifiedImageError

from proshot.core.exceptions import LocalProcessingError
from proshot.core.logging import get_logger

logger = get_logger(__name__)

# Takes an RGBA image, returns an RGBA image of the same size whose
# background pixels are transparent.
Segmenter = Callable[[Image.Image], Image.Image]


class RembgSegmenter:
    """Foreground segmentation with rembg.

    The model session is created on first use and reused afterwards.
    """

    def __init__(self, model_name: str = "u2net"):
        self.model_name = model_name
        self._session = None

    def __call__(self, image: Image.Image) -> Image.Image:
        # Lazy import: rembg pulls in onnxruntime
        from rembg import new_session, remove

        if self._session is None:
            self._session = new_session(self.model_name)
        return remove(image, session=self._session)


def parse_backdrop_color(value: str) -> Tuple[int, int, int]:
    """'#FFFFFF', 'white' or 'rgb(...)' to an RGB triple."""
    try:
        color = ImageColor.getrgb(value)
    except ValueError:
        raise ValueError(f"Invalid backdrop color: {value!r}")
    return color[0], color[1], color[2]


class LocalRasterProcessor:
    """
    Background removal plus solid-backdrop compositing.

    Output bytes depend only on the input bytes, the backdrop color and the
    segmenter, so a deterministic segmenter gives byte-identical output.
    """

    def __init__(
        self,
        segmenter: Optional[Segmenter] = None,
        backdrop_color: str = "#FFFFFF"
    ):
        self.segmenter = segmenter or RembgSegmenter()
        self.backdrop_rgb = parse_backdrop_color(backdrop_color)

    def normalize(self, image_bytes: bytes) -> Image.Image:
        """Decode, apply EXIF orientation and convert to RGBA."""
        try:
            image = Image.open(io.BytesIO(image_bytes))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise LocalProcessingError(f"Upload is not a readable image: {e}", stage="normalize")

        image = ImageOps.exif_transpose(image)
        return image.convert("RGBA")

    def segment(self, image: Image.Image) -> Image.Image:
        try:
            cutout = self.segmenter(image)
        except LocalProcessingError:
            raise
        except Exception as e:
            raise LocalProcessingError(f"Background removal failed: {e}", stage="segment")

        if not isinstance(cutout, Image.Image):
            raise LocalProcessingError("Segmenter did not return an image", stage="segment")
        if cutout.size != image.size:
            raise LocalProcessingError(
                f"Segmenter changed image size from {image.size} to {cutout.size}",
                stage="segment"
            )
        return cutout.convert("RGBA")

    def composite(self, cutout: Image.Image) -> Image.Image:
        """Flatten the cutout's alpha onto an opaque backdrop."""
        try:
            backdrop = Image.new("RGBA", cutout.size, self.backdrop_rgb + (255,))
            return Image.alpha_composite(backdrop, cutout).convert("RGB")
        except (ValueError, OSError) as e:
            raise LocalProcessingError(f"Compositing failed: {e}", stage="composite")

    def process(self, image_bytes: bytes) -> bytes:
        """
        Run the full local path.

        Returns:
            PNG bytes of the product on the backdrop

        Raises:
            LocalProcessingError: if any step fails
        """
        start_time = datetime.now(timezone.utc)
        logger.info("high_fidelity_starting", input_size=len(image_bytes))

        normalized = self.normalize(image_bytes)
        cutout = self.segment(normalized)
        flattened = self.composite(cutout)

        output_buffer = io.BytesIO()
        try:
            flattened.save(output_buffer, format="PNG")
        except OSError as e:
            raise LocalProcessingError(f"Encoding result failed: {e}", stage="encode")
        output_bytes = output_buffer.getvalue()

        duration_ms = int((datetime.now(timezone.utc) - start_time).total_seconds() * 1000)
        logger.info(
            "high_fidelity_completed",
            duration_ms=duration_ms,
            dimensions=flattened.size,
            output_size=len(output_bytes)
        )
        return output_bytes
