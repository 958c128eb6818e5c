"""Focus stacking CLI entry point.

Note:
    The GUI (`focusstack.gui.gui`) is the interactive way to stack images.
    This module runs the same pipeline from the command line, e.g.:

        focusstack layer_*.jpg -o stacked.png --smooth-iterations 3
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

import cv2
import numpy as np
from tqdm import tqdm

from focusstack.logging_setup import setup_logging
from focusstack.settings import StackingParams, load_config, load_params, save_config, save_params
from focusstack.stacking.errors import FocusStackError
from focusstack.stacking.pipeline import FocusStackPipeline, StackResult
from focusstack.stacking.preprocess import find_image_files, load_image_stack
from focusstack.stacking.reporting import Reporter, normalize_for_display

logger = logging.getLogger(__name__)


class TqdmReporter(Reporter):
    """Shows one tqdm progress bar per pipeline phase."""

    def __init__(self, disable: bool = False) -> None:
        self.disable = disable
        self._bar: Optional[tqdm] = None
        self._label: Optional[str] = None

    def on_progress(self, label: str, value: int, maximum: int) -> None:
        if label != self._label:
            self.close()
            self._label = label
            self._bar = tqdm(total=maximum, desc=label, unit="step", disable=self.disable)
        self._bar.n = value
        self._bar.refresh()

    def on_complete(self, result: StackResult) -> None:
        self.close()
        for warning in result.warnings:
            logger.warning("%s", warning)

    def on_error(self, exc: BaseException) -> None:
        self.close()

    def close(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None
        self._label = None


def save_image(path: Path, image: np.ndarray, quality: int = 95) -> None:
    """Write an image, mapping a 0-100 quality onto the format's setting.

    Raises:
        OSError: If OpenCV cannot write the file.
    """
    quality = max(0, min(100, int(quality)))
    suffix = path.suffix.lower()
    if suffix in (".jpg", ".jpeg"):
        params = [cv2.IMWRITE_JPEG_QUALITY, quality]
    elif suffix == ".png":
        params = [cv2.IMWRITE_PNG_COMPRESSION, int(round((100 - quality) * 9 / 100))]
    else:
        params = []

    path.parent.mkdir(parents=True, exist_ok=True)
    if not cv2.imwrite(str(path), image, params):
        raise OSError(f"Could not write image: {path}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Depth-map based focus stacking")
    parser.add_argument("images", nargs="*", help="Layers ordered by focus distance")
    parser.add_argument("--dir", type=str, help="Stack every image with --ext in this folder (sorted by name)")
    parser.add_argument("--ext", type=str, default="png", help="Image extension used with --dir")
    parser.add_argument("-o", "--output", type=str, required=True, help="Composite output path")
    parser.add_argument("--config", type=str, help="YAML file with stacking parameters")
    parser.add_argument("--params", type=str, help="Binary .param file with stacking parameters")
    parser.add_argument("--save-params", type=str, help="Write the effective parameters to a .param file")
    parser.add_argument("--save-config", type=str, help="Write the effective parameters to a YAML file")
    parser.add_argument("--laplace-kernel", type=int, help="Variance window of the sharpness measure (odd)")
    parser.add_argument("--smooth-kernel", type=int, help="Bilateral filter diameter (odd)")
    parser.add_argument("--smooth-strength", type=float, help="Bilateral filter sigma")
    parser.add_argument("--smooth-iterations", type=int, help="Number of smoothing passes")
    parser.add_argument(
        "--blend",
        dest="blend_layers",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Blend neighbouring layers for fractional depths",
    )
    parser.add_argument("--depth-map", type=str, help="Also save the normalized depth map to this path")
    parser.add_argument("--quality", type=int, default=95, help="Output quality 0-100")
    parser.add_argument("--no-progress", action="store_true", help="Hide progress bars")
    parser.add_argument("--verbose", action="store_true", help="Verbose logging")
    return parser


def resolve_params(args: argparse.Namespace) -> StackingParams:
    """Defaults <- YAML config <- .param file <- command line flags."""
    params = StackingParams()
    if args.config:
        params = load_config(args.config, params)
    if args.params:
        params = StackingParams.from_param_dict(load_params(args.params), params)

    overrides = {
        "laplace_kernel_size": args.laplace_kernel,
        "smooth_kernel_size": args.smooth_kernel,
        "smooth_strength": args.smooth_strength,
        "smooth_iterations": args.smooth_iterations,
        "blend_layers": args.blend_layers,
    }
    params = StackingParams.from_mapping({k: v for k, v in overrides.items() if v is not None}, params)
    return params.validated()


def run_focus_stacking(
    image_paths: Sequence[str],
    output_path: Path,
    params: StackingParams,
    *,
    depth_map_path: Optional[Path] = None,
    quality: int = 95,
    reporter: Optional[Reporter] = None,
) -> StackResult:
    """Load, stack and save a set of layers.

    Returns:
        The stacking result; the composite is also written to `output_path`.
    """
    images = load_image_stack(image_paths)
    result = FocusStackPipeline().run(images, reporter=reporter, **params.as_kwargs())

    save_image(output_path, result.composite, quality)
    logger.info("Saved composite image to: %s", output_path)
    if depth_map_path is not None:
        save_image(depth_map_path, normalize_for_display(result.depth_map), quality)
        logger.info("Saved depth map to: %s", depth_map_path)
    return result


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(verbose=args.verbose)

    image_paths = list(args.images)
    if args.dir:
        image_paths.extend(find_image_files(args.dir, args.ext))
    if not image_paths:
        parser.error("no input images given")

    try:
        params = resolve_params(args)
        if args.save_params:
            save_params(args.save_params, params)
        if args.save_config:
            save_config(args.save_config, params)

        reporter = TqdmReporter(disable=args.no_progress)
        run_focus_stacking(
            image_paths,
            Path(args.output),
            params,
            depth_map_path=Path(args.depth_map) if args.depth_map else None,
            quality=args.quality,
            reporter=reporter,
        )
    except (FocusStackError, OSError, ValueError) as exc:
        logger.error("Focus stacking failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
