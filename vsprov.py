#!/usr/bin/env python3
"""
vSphere provisioning tool - Main Entry Point
Parses arguments and dispatches actions to command handlers.
"""

import logging
import sys
import time

from dotenv import load_dotenv

from arg_parser import create_parser
from errors import ProviderError
from logger.log_config import setup_logger
from operation_logger import OperationLogger

# --- Environment & Logger Setup ---
load_dotenv()
logger = logging.getLogger('vsprov')


def summarize(results):
    """Counts successful, failed and skipped results of a command."""
    dicts = [r for r in results or [] if isinstance(r, dict)]
    success = sum(1 for r in dicts if r.get("status") == "success")
    failure = sum(1 for r in dicts if r.get("status") == "failed")
    skipped = sum(1 for r in dicts if "skip" in r.get("status", "").lower())
    return success, failure, skipped


def main(argv=None):
    """Main execution function. Returns the process exit code."""
    global logger

    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.error("A command (validate, plan, apply, destroy, refresh, show, import, read, types) is required.")

    args_dict = vars(args)
    operation_logger = OperationLogger(args.command, args_dict)
    run_id_for_logs = operation_logger.run_id
    logger = setup_logger(run_id=run_id_for_logs, verbose=args.verbose)

    start_time = time.perf_counter()
    overall_status, total_success, total_failure, total_skipped = "failed", 0, 0, 0
    exit_code = 1

    logger.debug(f"Executing command: {args.command} (Run ID: {run_id_for_logs})")
    try:
        all_results = args.func(args_dict, operation_logger)
        total_success, total_failure, total_skipped = summarize(all_results)

        if total_failure > 0:
            overall_status = "completed_with_errors"
        elif total_success > 0 or total_skipped > 0:
            overall_status = "completed"
        else:
            overall_status = "completed_no_tasks"
        exit_code = 1 if total_failure else 0
        logger.debug(f"Summary: Success={total_success}, Failed={total_failure}, Skipped={total_skipped}")

    except KeyboardInterrupt:
        print("\nTerminated by user.")
        overall_status = "terminated_by_user"
    except ProviderError as e:
        print(f"Error: {e}", file=sys.stderr)
        logger.debug("Command failed", exc_info=True)
        overall_status = "failed"
        total_failure += 1
    except Exception as e:
        logger.critical(f"Unhandled error during command execution: {e}", exc_info=True)
        overall_status = "failed_exception"
    finally:
        if not operation_logger._is_finalized:
            duration_minutes = (time.perf_counter() - start_time) / 60
            logger.debug(f"Cmd '{args.command}' finished in {duration_minutes:.2f} min. Final Status: {overall_status}")
            operation_logger.finalize(overall_status, total_success, total_failure)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
