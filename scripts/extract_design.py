"""
Design Extractor CLI
Extract the printed design from a product photo, or check the removal service
"""
import sys
import asyncio
import logging
import argparse
from pathlib import Path
from typing import Optional

sys.path.insert(0, str(Path(__file__).parent.parent))

from design_extractor.config import get_config, CropMode
from design_extractor.errors import ClassifiedError
from design_extractor.processor import ImageProcessor, InputFile
from design_extractor.recognition import create_background_removal_service
from design_extractor.validation import ensure_valid_file
from design_extractor.download import save_result
from design_extractor.logging_config import setup_logging

logger = logging.getLogger(__name__)


def build_processor(crop_mode: Optional[str] = None) -> ImageProcessor:
    config = get_config()
    if crop_mode:
        config.extraction.crop_mode = CropMode(crop_mode)

    recognition = config.recognition
    if not recognition.configured:
        raise SystemExit("REMOVE_BG_API_KEY is not set (or use REMOVAL_PROVIDER=rembg)")

    service = create_background_removal_service(recognition.provider, recognition.api_key)
    return ImageProcessor(service=service, config=config)


async def run_extract(image: str, output: Optional[str], crop_mode: Optional[str], with_retry: bool) -> int:
    path = Path(image)
    if not path.exists():
        print(f"Image not found: {image}")
        return 1

    processor = build_processor(crop_mode)
    try:
        input_file = InputFile.from_path(path)
        ensure_valid_file(input_file)

        if with_retry:
            result = await processor.process_with_retry(input_file)
        else:
            result = await processor.process_image(input_file)

        if output:
            out = Path(output)
            saved = save_result(result, output_dir=out.parent, filename=out.name)
        else:
            saved = save_result(result)

    except ClassifiedError as e:
        print(f"\nExtraction failed [{e.code.value}]: {e.message}")
        if e.details:
            print(f"   Details: {e.details}")
        if e.retryable:
            print("   This error is temporary, try again (or pass --retry)")
        return 1
    finally:
        await processor.aclose()

    print("\n" + "="*50)
    print("EXTRACTION SUMMARY")
    print("="*50)
    print(f"Input:          {path} ({input_file.size/1024:.1f}KB)")
    print(f"Output:         {saved} ({result.extracted.size/1024:.1f}KB)")
    print(f"Dimensions:     {result.width}x{result.height}")
    print(f"Time:           {result.processing_time_ms}ms")
    print("="*50)
    return 0


async def run_status() -> int:
    processor = build_processor()
    try:
        available = await processor.check_service_status()
    finally:
        await processor.aclose()

    provider = get_config().recognition.provider
    print(f"{provider}: {'available' if available else 'unavailable'}")
    return 0 if available else 1


def main():
    """CLI entry point"""
    parser = argparse.ArgumentParser(
        description='Extract printed designs from product photos'
    )
    parser.add_argument('--log-level', default=None, help='Logging level (default: LOG_LEVEL or INFO)')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Extract
    extract_parser = subparsers.add_parser('extract', help='Extract the design from an image')
    extract_parser.add_argument('image', help='Path to a JPG, PNG or WebP image')
    extract_parser.add_argument('--output', help='Output PNG path (default: generated name in DOWNLOAD_DIR)')
    extract_parser.add_argument(
        '--crop-mode',
        choices=[mode.value for mode in CropMode],
        help='Where to crop to the design (default: CROP_MODE or service)'
    )
    extract_parser.add_argument('--retry', action='store_true', help='Retry the whole extraction on temporary errors')

    # Status
    subparsers.add_parser('status', help='Check the background removal service')

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    setup_logging(level=args.log_level or get_config().log_level, log_to_file=False)

    if args.command == 'extract':
        code = asyncio.run(run_extract(args.image, args.output, args.crop_mode, args.retry))
    else:
        code = asyncio.run(run_status())
    sys.exit(code)


if __name__ == "__main__":
    main()
