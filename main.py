#!/usr/bin/env python3
"""
Main entry point for the PDF translator
Runs the web service or translates a single PDF from the command line
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import textwrap
from pathlib import Path
from typing import TYPE_CHECKING

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Package imports are function-level to keep --help fast
if TYPE_CHECKING:
    from pdftrans import TranslatorConfig


def setup_logging(level: str = "INFO") -> None:
    """Setup logging configuration with timestamped log files."""
    from pdftrans.misc import tz_now  # noqa: PLC0415 - lazy import for startup performance

    logs_dir = Path(".logs")
    logs_dir.mkdir(exist_ok=True)

    timestamp = tz_now().strftime("%Y-%m-%d_%H-%M-%S")
    log_filename = logs_dir / f"{timestamp}_pdf_translator.log"

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout), logging.FileHandler(log_filename, encoding="utf-8")],
    )
    # Request-level logs from the HTTP client are too chatty at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def main() -> int:
    """CLI entry point."""
    parser = _build_argument_parser()
    args = parser.parse_args()

    setup_logging(args.log_level)
    logger = logging.getLogger(__name__)

    return _execute_command(args, logger)


def _build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="PDF Translator - OCR and translate PDFs page by page with resumable checkpoints",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent(
            """
            Examples:
              # Run the web service (BASE_URL and API_KEY from .env)
              python main.py serve
              python main.py serve --port 9000 --max-concurrent-tasks 3

              # Translate one file locally
              python main.py translate --input paper.pdf --output paper_zh.pdf

              # Resume a failed local run from its checkpoints
              python main.py translate --input paper.pdf --output paper_zh.pdf --task-id <id>
            """
        ),
    )
    parser.add_argument(
        "--config",
        type=str,
        default="settings/config.yaml",
        help="YAML configuration file (default: settings/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    # Model and scheduling options shared by both commands
    parser.add_argument("--ocr-model", dest="ocr_model", type=str, help="Recognition model")
    parser.add_argument("--translate-model", dest="translate_model", type=str, help="Translation model")
    parser.add_argument("--target-language", dest="target_language", type=str, help="Translation target language")
    parser.add_argument(
        "--max-concurrent-tasks",
        dest="max_concurrent_tasks",
        type=int,
        help="Maximum number of tasks running at once",
    )
    parser.add_argument("--batch-size", dest="batch_size", type=int, help="Pages processed concurrently per task")
    parser.add_argument("--max-retries", dest="max_retries", type=int, help="Retries for transient API failures")
    parser.add_argument("--checkpoint-dir", dest="checkpoint_dir", type=str, help="Checkpoint directory")

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the web service")
    serve.add_argument("--host", type=str, help="Bind address (default: 0.0.0.0)")
    serve.add_argument("--port", type=int, help="Port (default: 8080 or $PORT)")

    translate = subparsers.add_parser("translate", help="Translate a single PDF")
    translate.add_argument("--input", "-i", type=str, required=True, help="Input PDF path")
    translate.add_argument(
        "--output",
        "-o",
        type=str,
        help="Output PDF path (default: <input>_translated.pdf)",
    )
    translate.add_argument(
        "--task-id",
        dest="task_id",
        type=str,
        help="Task id of an earlier run; pages already translated are loaded from checkpoints",
    )

    return parser


def _load_config(args: argparse.Namespace) -> TranslatorConfig:
    from pdftrans import TranslatorConfig  # noqa: PLC0415
    from pdftrans.misc import set_default_timezone  # noqa: PLC0415

    config = TranslatorConfig.from_yaml(Path(args.config))
    config = TranslatorConfig.from_env(base=config)
    config = TranslatorConfig.from_cli(args, base=config)
    config.validate()
    set_default_timezone(config.timezone)
    return config


def _execute_command(args: argparse.Namespace, logger: logging.Logger) -> int:
    from pdftrans.exceptions import TranslatorError  # noqa: PLC0415

    try:
        config = _load_config(args)
        if args.command == "serve":
            return _serve(config, logger)
        return asyncio.run(_translate_file(config, args, logger))
    except KeyboardInterrupt:
        logger.info("Process interrupted by user")
        return 1
    except TranslatorError as exc:
        logger.error("%s", exc)
        return 1
    except Exception as exc:  # noqa: BLE001 - retain broad logging for CLI
        logger.error("Unexpected error: %s", exc, exc_info=True)
        return 1


def _serve(config: TranslatorConfig, logger: logging.Logger) -> int:
    import uvicorn  # noqa: PLC0415

    from pdftrans import TaskController  # noqa: PLC0415
    from pdftrans.web import create_app  # noqa: PLC0415

    controller = TaskController.from_config(config)
    app = create_app(controller)
    logger.info("Starting web service on %s:%d", config.host, config.port)
    uvicorn.run(app, host=config.host, port=config.port, log_config=None)
    return 0


async def _translate_file(config: TranslatorConfig, args: argparse.Namespace, logger: logging.Logger) -> int:
    from pdftrans import TaskController  # noqa: PLC0415

    input_path = Path(args.input)
    if not input_path.is_file():
        logger.error("Input file not found: %s", input_path)
        return 1
    output_path = Path(args.output) if args.output else input_path.with_name(f"{input_path.stem}_translated.pdf")

    controller = TaskController.from_config(config)
    try:
        task_id = await controller.submit(input_path.read_bytes(), input_path.name, task_id=args.task_id)
        logger.info("Task %s started (pass --task-id %s to resume after a failure)", task_id, task_id)

        last_seen: tuple[str, int] | None = None
        async for snapshot in controller.poll_progress(task_id, interval=1.0):
            if snapshot is None:
                break
            current = (snapshot.status.value, snapshot.translated_pages)
            if current != last_seen:
                logger.info(
                    "%s: %.0f%% (%d/%d pages translated)",
                    snapshot.status.value,
                    snapshot.percentage,
                    snapshot.translated_pages,
                    snapshot.total_pages,
                )
                last_seen = current
        await controller.wait(task_id)

        result = controller.get_result(task_id)
        if result is None:
            snapshot = controller.get_progress(task_id)
            logger.error("Translation failed: %s", snapshot.message if snapshot else "unknown error")
            return 1

        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(result)
        logger.info("Results saved to: %s", output_path)
        return 0
    finally:
        await controller.aclose()


if __name__ == "__main__":
    sys.exit(main())
