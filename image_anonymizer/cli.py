"""
Command-line interface for the image anonymizer.

Masks sensitive text and faces in still images using Google Cloud Vision for
detection and Gemini for name classification.
"""

import argparse
import json
import os
import sys
import time
from dataclasses import replace
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Union

from dotenv import load_dotenv

from . import __version__
from .config import AnonymizerConfig, load_config, normalize_literals
from .exceptions import ClassificationFailed, DetectionFailed
from .logger import LOG_LEVELS, get_logger, set_log_level, setup_root_logger
from .mock_clients import MockTextClassifier, MockVisionClient
from .pipeline import AnonymizationPipeline
from .redactor import load_image, save_image
from .text_classifier import GeminiTextClassifier
from .vision import GoogleVisionClient


DEFAULT_EXTENSIONS = [".jpg", ".jpeg", ".png", ".bmp", ".tiff", ".webp"]


def create_parser() -> argparse.ArgumentParser:
    """Create command-line argument parser."""
    parser = argparse.ArgumentParser(
        prog="image-anonymizer",
        description="A tool to mask sensitive content in images",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Mask PII and faces in one screenshot
  image-anonymizer screenshot.png -o output/

  # Also mask every word containing these strings
  image-anonymizer screenshot.png --mask-texts "Acme,internal"

  # Process a directory with four workers, faces left alone
  image-anonymizer shots/ --recursive --workers 4 --no-faces
        """
    )

    parser.add_argument(
        "inputs",
        nargs="+",
        help="Input image files or directories"
    )

    parser.add_argument(
        "--output-dir", "-o",
        type=str,
        default="./output",
        help="Output directory (default: ./output)"
    )

    parser.add_argument(
        "--mask-texts", "-m",
        type=str,
        help="Comma-separated strings to mask wherever they appear (case-insensitive)"
    )

    parser.add_argument(
        "--api-key", "-a",
        type=str,
        help="Google API key (default: GCP_API_KEY environment variable)"
    )

    parser.add_argument(
        "--no-faces",
        action="store_true",
        help="Do not mask faces"
    )

    parser.add_argument(
        "--mask-color",
        type=str,
        help="Solid mask color as R,G,B (default: 255,0,255)"
    )

    parser.add_argument(
        "--block-size",
        type=int,
        help="Mosaic block size in pixels for faces (default: 16)"
    )

    parser.add_argument(
        "--min-area",
        type=int,
        help="Minimum OCR region area in pixels (default: 4)"
    )

    parser.add_argument(
        "--config", "-c",
        type=str,
        help="Path to JSON configuration file"
    )

    parser.add_argument(
        "--workers", "-w",
        type=int,
        default=1,
        help="Images processed in parallel (default: 1)"
    )

    parser.add_argument(
        "--offline",
        action="store_true",
        help="Use built-in demo detections instead of the Google APIs"
    )

    parser.add_argument(
        "--recursive", "-r",
        action="store_true",
        help="Process directories recursively"
    )

    parser.add_argument(
        "--extensions",
        type=str,
        nargs="+",
        default=DEFAULT_EXTENSIONS,
        help="File extensions to process in directories"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=LOG_LEVELS,
        help="Logging level (default: log_level from the config file, else INFO)"
    )

    parser.add_argument(
        "--log-file",
        type=str,
        help="Path to log file (default: console only)"
    )

    parser.add_argument(
        "--save-metadata",
        action="store_true",
        help="Write a JSON report of the masked regions next to each output image"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be processed without actually processing"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"image-anonymizer {__version__}"
    )

    return parser


def parse_color(value: str) -> tuple:
    """Parse 'R,G,B' into a tuple of ints."""
    parts = [p.strip() for p in value.split(",")]
    if len(parts) != 3:
        raise ValueError(f"Expected R,G,B but got {value!r}")
    return tuple(int(p) for p in parts)


def apply_overrides(config: AnonymizerConfig, args: argparse.Namespace) -> AnonymizerConfig:
    """Override configuration with command-line arguments."""
    if args.mask_texts:
        config.user_literals = normalize_literals(
            config.user_literals + args.mask_texts.split(",")
        )
    if args.api_key:
        config.vision.api_key = args.api_key
        config.classification.api_key = args.api_key
    if args.no_faces:
        config.detection.enable_face_masking = False
    if args.mask_color:
        config.redaction = replace(config.redaction, mask_color=parse_color(args.mask_color))
    if args.block_size is not None:
        config.redaction = replace(config.redaction, mosaic_block_size=args.block_size)
    if args.min_area is not None:
        config.detection = replace(config.detection, min_region_area=args.min_area)
    if args.log_level:
        config.log_level = args.log_level
    return config


def find_input_files(
    inputs: List[Union[str, Path]],
    extensions: List[str],
    recursive: bool = False
) -> List[Path]:
    """Find input files based on paths and extensions."""
    wanted = {ext.lower() for ext in extensions}
    files = []

    for input_path in inputs:
        input_path = Path(input_path)
        if not input_path.exists():
            raise FileNotFoundError(f"Input path not found: {input_path}")

        if input_path.is_file():
            files.append(input_path)
        else:
            pattern = "**/*" if recursive else "*"
            files.extend(
                p for p in input_path.glob(pattern)
                if p.is_file() and p.suffix.lower() in wanted
            )

    return sorted(set(files))


def build_pipeline(config: AnonymizerConfig, offline: bool = False) -> AnonymizationPipeline:
    """Create the pipeline with real or offline collaborators."""
    if offline:
        return AnonymizationPipeline(config, MockVisionClient(), MockTextClassifier())

    return AnonymizationPipeline(
        config,
        GoogleVisionClient(config.vision),
        GeminiTextClassifier(config.classification)
    )


def process_single_file(
    input_path: Path,
    output_dir: Path,
    pipeline: AnonymizationPipeline,
    logger,
    save_metadata: bool = False
) -> dict:
    """Process a single input file; failed images are not written."""
    logger.info(f"Processing: {input_path}")

    start_time = time.time()
    processing_info = {
        "input_file": str(input_path),
        "output_file": None,
        "success": False,
        "error": None,
        "processing_time_ms": 0,
        "masked_regions": 0
    }

    try:
        image = load_image(input_path)
        image_bytes = input_path.read_bytes()
    except OSError as e:
        logger.error(f"Failed to read {input_path}: {e}")
        processing_info["error"] = str(e)
        return processing_info

    try:
        result = pipeline.run(image, image_bytes)
    except (DetectionFailed, ClassificationFailed) as e:
        logger.error(f"Failed to process {input_path}: {e}")
        processing_info["error"] = str(e)
        return processing_info

    output_path = output_dir / f"masked_{input_path.name}"
    save_image(result.image, output_path)
    logger.info(f"Saved processed image to: {output_path}")

    processing_info.update({
        "output_file": str(output_path),
        "success": True,
        "processing_time_ms": (time.time() - start_time) * 1000,
        "masked_regions": len(result.merged_regions)
    })

    if save_metadata:
        metadata_path = output_dir / f"{input_path.stem}_metadata.json"
        metadata = {
            "input_file": processing_info["input_file"],
            "output_file": processing_info["output_file"],
            "processing_time_ms": processing_info["processing_time_ms"],
            "pipeline": result.metadata,
            "regions": [region.to_dict() for region in result.merged_regions]
        }
        with open(metadata_path, 'w') as f:
            json.dump(metadata, f, indent=2)
        logger.info(f"Saved metadata to: {metadata_path}")

    return processing_info


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    load_dotenv()

    log_file = Path(args.log_file) if args.log_file else None
    setup_root_logger(args.log_level or "INFO", log_file)
    logger = get_logger(__name__)

    try:
        config = apply_overrides(load_config(args.config), args)
    except (OSError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    set_log_level(config.log_level)

    if not args.offline and not (args.api_key or os.environ.get("GCP_API_KEY")):
        logger.error("GCP_API_KEY environment variable is not set")
        return 1

    try:
        input_files = find_input_files(args.inputs, args.extensions, args.recursive)
    except FileNotFoundError as e:
        logger.error(str(e))
        return 1

    if not input_files:
        logger.error("No input files found")
        return 1

    logger.info(f"Found {len(input_files)} files to process")

    if args.dry_run:
        logger.info("DRY RUN - Files that would be processed:")
        for file_path in input_files:
            logger.info(f"  {file_path}")
        return 0

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    pipeline = build_pipeline(config, offline=args.offline)

    try:
        with ThreadPoolExecutor(max_workers=max(1, args.workers)) as executor:
            results = list(executor.map(
                lambda path: process_single_file(path, output_dir, pipeline, logger, args.save_metadata),
                input_files
            ))
    except KeyboardInterrupt:
        logger.info("Processing interrupted by user")
        return 1

    successful = sum(1 for r in results if r["success"])
    failed = len(results) - successful
    total_regions = sum(r["masked_regions"] for r in results)

    logger.info(
        f"Processing complete: {successful}/{len(results)} images, "
        f"{total_regions} masked regions, output in {output_dir}"
    )

    if failed > 0:
        logger.warning(f"{failed} files failed to process")
        for result in results:
            if not result["success"]:
                logger.warning(f"  {result['input_file']}: {result['error']}")
        logger.debug(json.dumps(results, indent=2))

    return 0 if failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
