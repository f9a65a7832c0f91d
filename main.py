"""
Main entry point for the resemble-clips application.

This script initializes the configuration, sets up logging, creates the
controller, and runs the requested command on the asyncio event loop until
every clip request has finished.
"""

import argparse
import sys
import logging
import asyncio
from datetime import timedelta
from types import TracebackType
from typing import List, Optional, Type

from resemble_clips._version import __version__
from resemble_clips.logging_config import setup_logging
from resemble_clips.config import ConfigManager
from resemble_clips.constants import CONFIG_FILE, JOBS_FILE
from resemble_clips.controller import AppController
from resemble_clips.exceptions import ApiError, ConfigurationError
from resemble_clips.text import build_resemble_string

def handle_exception(exc_type: Type[BaseException], exc_value: BaseException, exc_traceback: TracebackType):
    """Logs unhandled exceptions from synchronous code."""
    logger = logging.getLogger()
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return
    logger.critical("Unhandled exception:", exc_info=(exc_type, exc_value, exc_traceback))

def handle_async_exception(loop, context):
    """Logs unhandled exceptions from asyncio tasks."""
    logger = logging.getLogger()
    msg = context.get("exception", context["message"])
    logger.critical(f"Caught exception from asyncio task: {msg}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='resemble-clips', description="Generate speech clips with Resemble.")
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--log-level', default=None, help="Console log level (defaults to the configured level).")
    sub = parser.add_subparsers(dest='command', required=True)

    generate = sub.add_parser('generate', help="Create a named clip and download its audio.")
    update = sub.add_parser('update', help="Regenerate an existing remote clip and download its audio.")
    for command in (generate, update):
        command.add_argument('--title', required=True)
        command.add_argument('--text', required=True, action='append',
                             help="Text to speak; repeat for several segments. Prefix with 'Emotion:' to tag a segment.")
        command.add_argument('--out', required=True, help="Output file, relative to the configured output directory.")
        command.add_argument('--voice', default=None)
    generate.add_argument('--clip-id', default='', help="Existing remote clip to update instead of creating one.")
    update.add_argument('--clip-id', required=True)

    oneshot = sub.add_parser('oneshot', help="Generate audio through a temporary clip that is deleted afterwards.")
    oneshot.add_argument('--text', required=True, action='append')
    oneshot.add_argument('--out', required=True)
    oneshot.add_argument('--voice', default=None)

    sub.add_parser('resume', help="Finish clip requests left over from a previous run.")

    cleanup = sub.add_parser('cleanup', help="Delete temporary clips orphaned by interrupted one-shot requests.")
    cleanup.add_argument('--max-age-hours', type=float, default=None)
    return parser


def parse_segments(values: List[str]):
    """Turns 'Happy:Hello there' into ('Hello there', 'Happy'); untagged text stays neutral."""
    segments = []
    for value in values:
        emotion, sep, text = value.partition(':')
        if sep and emotion and ' ' not in emotion:
            segments.append((text, emotion))
        else:
            segments.append(value)
    return build_resemble_string(segments)


async def run_command(controller: AppController, args: argparse.Namespace) -> int:
    await controller.run_startup_checks()

    if args.command == 'cleanup':
        max_age = timedelta(hours=args.max_age_hours) if args.max_age_hours is not None else None
        try:
            deleted = await controller.cleanup_orphaned_clips(max_age)
        except ApiError as e:
            logging.error(f"Cleanup failed: {e}")
            return 1
        logging.info(f"Deleted {deleted} orphaned clip(s).")
    elif args.command in ('generate', 'update'):
        await controller.generate_clip(args.title, parse_segments(args.text), args.out,
                                       voice=args.voice, remote_id=args.clip_id)
    elif args.command == 'oneshot':
        await controller.generate_one_shot(parse_segments(args.text), args.out, voice=args.voice)

    await controller.wait_until_idle()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    # 1. Load configuration before setting up logging
    config_manager = ConfigManager(CONFIG_FILE)
    config = config_manager.load()

    # 2. Use the configured log level for file logging
    setup_logging(config.log_level, args.log_level or config.log_level)

    # 3. Set up global exception handlers
    sys.excepthook = handle_exception

    # 4. Create the Controller, which holds all business logic
    controller = AppController(config_manager, config, JOBS_FILE)

    async def main_with_exception_handler() -> int:
        """Wrapper to set the asyncio exception handler for the running loop."""
        try:
            loop = asyncio.get_running_loop()
            loop.set_exception_handler(handle_async_exception)
        except RuntimeError:
            logging.error("Could not get running loop to set exception handler.")
        try:
            return await run_command(controller, args)
        finally:
            await controller.on_app_closing()

    try:
        return asyncio.run(main_with_exception_handler())
    except ConfigurationError as e:
        logging.critical(f"Configuration error: {e}")
        return 2
    except KeyboardInterrupt:
        logging.info("Application interrupted by user. Unfinished requests will resume next time.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
