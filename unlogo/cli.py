"""Command-line interface for unlogo.

This module provides the main CLI entry point that removes the corner logo
from a single image or a directory of images, optionally in parallel, and
writes the cleaned images plus an optional JSON detection report.
"""

import argparse
import json
import logging
import statistics
import sys
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Any, Dict, List, Optional

from tqdm import tqdm

from .calibration import CalibrationError, fetch_reference_assets
from .engine import DetectionMethod, WatermarkEngine
from .matcher import DEFAULT_STEP, DEFAULT_THRESHOLD, MatchConfig
from .utils import get_image_files, load_image, save_image, setup_logger
from .visualize import save_detection_overlay, save_score_map

logger = setup_logger(__name__)

def process_single_image(
    engine: WatermarkEngine,
    image_path: Path,
    output_dir: Path,
    keep_debug: bool = False,
) -> Dict[str, Any]:
    """Remove the watermark from one image file and save the result.

    Args:
        engine: Shared watermark engine
        image_path: Path to input image
        output_dir: Directory to save outputs
        keep_debug: Whether to save the detection overlay and score map

    Returns:
        Per-image record with the detection report and timings
    """
    start_time = time.time()

    image = load_image(image_path)
    height, width = image.shape[:2]
    load_time = time.time() - start_time

    original = image.copy() if keep_debug else None

    removal_start = time.time()
    _, report = engine.remove_watermark(image)
    removal_time = time.time() - removal_start

    output_path = output_dir / f"{image_path.stem}_clean{image_path.suffix}"
    save_image(image, output_path)
    logger.debug(f"Saved result to: {output_path.name}")

    if keep_debug:
        save_detection_overlay(original, report, output_dir / f"{image_path.stem}_detection.png")
        save_score_map(
            original,
            engine.references[report.size_class],
            report,
            output_dir / f"{image_path.stem}_scores.png",
            engine.config,
        )

    if report.method == DetectionMethod.FIXED:
        logger.warning(f"{image_path.name}: no confident match, used fixed position")

    return {
        "image": image_path.name,
        "width": width,
        "height": height,
        "output": str(output_path),
        "detection": report.to_dict(),
        "load_time": load_time,
        "removal_time": removal_time,
        "total_time": time.time() - start_time,
    }

def process_images(
    engine: WatermarkEngine,
    image_files: List[Path],
    output_dir: Path,
    workers: int = 1,
    keep_debug: bool = False,
    show_progress: bool = True,
) -> List[Dict[str, Any]]:
    """Process many images, sharing one engine across worker threads.

    Failures are logged and recorded; they never stop the batch.

    Returns:
        One record per input image, in input order. Failed images carry an
        ``error`` entry instead of a detection.
    """
    records: Dict[Path, Dict[str, Any]] = {}

    progress = tqdm(total=len(image_files), desc="Removing watermarks", disable=not show_progress)
    with ThreadPoolExecutor(max_workers=max(1, workers)) as executor:
        futures = {
            executor.submit(process_single_image, engine, path, output_dir, keep_debug): path
            for path in image_files
        }
        for future in as_completed(futures):
            path = futures[future]
            try:
                records[path] = future.result()
            except Exception as e:
                logger.error(f"Error processing {path.name}: {e}")
                records[path] = {"image": path.name, "error": str(e)}
            progress.update(1)
    progress.close()

    return [records[path] for path in image_files]

def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the watermark removal tool."""
    args = parse_args(argv)

    # Setup logging
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        for name in list(logging.root.manager.loggerDict):
            if name.startswith("unlogo"):
                logging.getLogger(name).setLevel(logging.DEBUG)
        logger.debug("Debug logging enabled")

    # Setup file logging if requested
    if args.logfile:
        log_path = Path(args.logfile)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, mode='w')
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        logging.getLogger().addHandler(file_handler)
        logger.info(f"Logging to file: {log_path}")

    start_time = time.time()

    # Validate input path
    input_path = Path(args.input)
    if not input_path.exists():
        logger.error(f"Input path '{args.input}' does not exist")
        sys.exit(1)

    image_files = get_image_files(input_path)
    if not image_files:
        logger.error(f"No valid image files found in '{args.input}'")
        sys.exit(1)

    output_path = Path(args.output)
    output_path.mkdir(parents=True, exist_ok=True)

    try:
        config = MatchConfig(
            search_radius=args.search_radius,
            step=args.step,
            threshold=args.threshold,
        )
    except ValueError as e:
        logger.error(f"Invalid search settings: {e}")
        sys.exit(1)

    # Load calibration references once
    try:
        assets_dir = args.assets_dir
        if args.fetch_assets:
            assets_dir = fetch_reference_assets(assets_dir)
        engine = WatermarkEngine.from_assets(assets_dir, config)
    except CalibrationError as e:
        logger.error(f"Failed to load calibration references: {e}")
        logger.error("Run with --fetch-assets to download them.")
        sys.exit(1)

    logger.info(f"Found {len(image_files)} image(s) to process")

    records = process_images(
        engine,
        image_files,
        output_path,
        workers=args.workers,
        keep_debug=args.keep_debug,
        show_progress=len(image_files) > 1 and not args.verbose,
    )

    total_time = time.time() - start_time
    succeeded = [r for r in records if "error" not in r]
    template_hits = sum(1 for r in succeeded if r["detection"]["method"] == DetectionMethod.TEMPLATE.value)

    logger.info("Processing complete:")
    logger.info(f"Total elapsed time: {total_time:.1f} seconds")
    logger.info(f"Images processed: {len(succeeded)}/{len(records)}")
    logger.info(f"Template matches: {template_hits}, fixed fallbacks: {len(succeeded) - template_hits}")

    if args.report:
        report_path = Path(args.report)
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report_path.write_text(json.dumps(records, indent=2))
        logger.info(f"Detection report saved to: {report_path}")

    if args.timing and succeeded:
        timing_file = output_path / "timing_report.txt"
        _save_timing_report(succeeded, total_time, timing_file)
        logger.info(f"Timing report saved to: {timing_file}")

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Remove the semi-transparent corner logo from AI-generated images."
    )

    parser.add_argument(
        "-i", "--input",
        required=True,
        help="Path to input image file or directory of images"
    )

    parser.add_argument(
        "-o", "--output",
        required=True,
        help="Path to output directory"
    )

    parser.add_argument(
        "--assets-dir",
        help="Directory holding bg_48.png and bg_96.png "
             "(default: $UNLOGO_ASSETS_DIR, packaged assets, then ~/.unlogo/assets)"
    )

    parser.add_argument(
        "--fetch-assets",
        action="store_true",
        help="Download missing calibration references before processing"
    )

    parser.add_argument(
        "--threshold",
        type=float,
        default=DEFAULT_THRESHOLD,
        help=f"Minimum correlation score for a template match (default: {DEFAULT_THRESHOLD})"
    )

    parser.add_argument(
        "--search-radius",
        type=int,
        help="Pixels to search around the expected position (default: one logo width)"
    )

    parser.add_argument(
        "--step",
        type=int,
        default=DEFAULT_STEP,
        help=f"Pixel step of the coarse search (default: {DEFAULT_STEP})"
    )

    parser.add_argument(
        "-w", "--workers",
        type=int,
        default=1,
        help="Number of images to process in parallel (default: 1)"
    )

    parser.add_argument(
        "-r", "--report",
        help="Path to write a JSON detection report"
    )

    parser.add_argument(
        "-k", "--keep-debug",
        action="store_true",
        help="Save detection overlays and score maps alongside output images"
    )

    parser.add_argument(
        "-t", "--timing",
        action="store_true",
        help="Create detailed timing report"
    )

    parser.add_argument(
        "-l", "--logfile",
        help="Path to log file for detailed logging"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )

    return parser.parse_args(argv)

def _save_timing_report(records: List[Dict[str, Any]], total_time: float, timing_file: Path) -> None:
    """Save a timing report with one row per image."""
    with open(timing_file, 'w') as f:
        f.write("=" * 70 + "\n")
        f.write("WATERMARK REMOVAL TIMING REPORT\n")
        f.write("=" * 70 + "\n")
        f.write("Columns: MP=Megapixels, Load=Decode, Rem=Detect+Remove, Tot=Total, Score=NCC\n")
        f.write(f"{'Image Name':<25} {'MP':>5} {'Load':>5} {'Rem':>5} {'Tot':>5} {'Method':>8} {'Score':>6}\n")
        f.write("-" * 70 + "\n")

        for record in records:
            name = record['image'][:25]
            mp = record['width'] * record['height'] / 1e6
            detection = record['detection']
            f.write(f"{name:<25} {mp:>5.1f} {record['load_time']:>5.2f} "
                    f"{record['removal_time']:>5.2f} {record['total_time']:>5.2f} "
                    f"{detection['method']:>8} {detection['score']:>6.3f}\n")

        if len(records) > 1:
            f.write("-" * 70 + "\n")
            rem_times = [r['removal_time'] for r in records]
            tot_times = [r['total_time'] for r in records]
            f.write(f"{'MEDIAN':<25} {'':>5} {'':>5} {statistics.median(rem_times):>5.2f} "
                    f"{statistics.median(tot_times):>5.2f}\n")
            f.write(f"{'AVERAGE':<25} {'':>5} {'':>5} {statistics.mean(rem_times):>5.2f} "
                    f"{statistics.mean(tot_times):>5.2f}\n")

        f.write("-" * 70 + "\n")
        f.write(f"Total processing time: {total_time:.1f} seconds\n")
        f.write(f"Images processed: {len(records)}\n")

if __name__ == "__main__":
    main()
