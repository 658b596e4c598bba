"""Contains the OperationLogger class for structured run summaries."""

import datetime
import logging
from typing import Any, Dict, List, Optional

import pymongo
import shortuuid
from pymongo.errors import ConnectionFailure, PyMongoError

from constants import DB_NAME, OPERATION_LOG_COLLECTION
from db_utils import MONGO_URI
from logger.log_config import flush_mongo_handler_for_run, remove_handler_reference

logger = logging.getLogger('vsprov.oplogger')


def _utcnow():
    return datetime.datetime.now(datetime.timezone.utc)


class OperationLogger:
    """
    Logs a structured summary of one CLI run to MongoDB's operation_logs.
    Triggers flushing of the buffered detailed logs when finalized.

    Without MONGO_HOST the summary is only logged locally.
    """

    def __init__(self, command: str, args_dict: Dict[str, Any], mongo_uri: Optional[str] = MONGO_URI):
        """
        :param command: The command being executed (e.g. 'apply', 'destroy').
        :param args_dict: The parsed CLI arguments.
        :param mongo_uri: MongoDB URI, None disables the database summary.
        """
        self.run_id = shortuuid.uuid()
        self.command = command
        self.args_dict = self._sanitize_args(args_dict)
        self.start_time = _utcnow()
        self._resource_results: List[Dict[str, Any]] = []
        self.mongo_uri = mongo_uri
        self.client = None
        self.collection = None
        self.connection_failed = False
        self._is_finalized = False
        self._connect_db()
        if self.collection is not None:
            self._log_initial_start()

    @staticmethod
    def _sanitize_args(args_dict: Dict[str, Any]) -> Dict[str, Any]:
        """Removes non-serializable items (like the argparse func) from args for logging."""
        safe_args = {}
        for key, value in args_dict.items():
            if key == 'func':
                continue
            if isinstance(value, (str, int, float, bool, list, dict, type(None))):
                safe_args[key] = value
            else:
                safe_args[key] = str(value)
        return safe_args

    def _connect_db(self):
        if not self.mongo_uri:
            self.connection_failed = True
            logger.debug(f"[OpLogger:{self.run_id}] MongoDB URI not set, operation log kept local.")
            return
        try:
            self.client = pymongo.MongoClient(self.mongo_uri, serverSelectionTimeoutMS=10000)
            self.client.admin.command('ping')
            self.collection = self.client[DB_NAME][OPERATION_LOG_COLLECTION]
            logger.debug(f"[OpLogger:{self.run_id}] Connected to MongoDB for Operation Log.")
        except (PyMongoError, ConnectionFailure) as e:
            logger.error(f"[OpLogger:{self.run_id}] OpLogger MongoDB connection failed: {e}")
            self.connection_failed = True
            self.client = None
            self.collection = None

    def _log_initial_start(self):
        start_data = {
            "run_id": self.run_id,
            "command": self.command,
            "args": self.args_dict,
            "start_time": self.start_time,
            "end_time": None,
            "duration_seconds": None,
            "overall_status": "running",
            "summary": {"success_count": 0, "failure_count": 0},
            "resource_statuses": [],
        }
        try:
            self.collection.insert_one(start_data)
            logger.debug(f"Operation '{self.command}' starting with run_id: {self.run_id}")
        except PyMongoError as e:
            logger.error(f"[OpLogger:{self.run_id}] FAILED to write initial operation log: {e}")

    @property
    def resource_results(self):
        return list(self._resource_results)

    def log_resource_status(self, address: str, action: str, status: str, error: Optional[str] = None):
        """
        Stores the outcome of one planned change.

        :param address: Resource address, e.g. 'vsphere_zone.z1'.
        :param action: create, update, replace, delete, read or import.
        :param status: 'success', 'failed' or 'skipped'.
        :param error: Error message when status is 'failed'.
        """
        self._resource_results.append({
            "timestamp": _utcnow(),
            "address": address,
            "action": action,
            "status": status,
            "error_message": error,
        })
        if status == "failed":
            logger.error(f"RunID {self.run_id} - {action} of '{address}' failed: {error}")

    def finalize(self, overall_status: str, success_count: int, failure_count: int):
        """
        Writes the final status, counts, duration and resource statuses,
        and flushes the detailed logs of the run.
        """
        if self._is_finalized:
            logger.warning(f"[OpLogger:{self.run_id}] Finalize called more than once. Ignoring.")
            return

        end_time = _utcnow()
        duration = (end_time - self.start_time).total_seconds()
        flush_mongo_handler_for_run(self.run_id, end_time=end_time)

        if self.collection is not None:
            log_update = {
                "$set": {
                    "end_time": end_time,
                    "duration_seconds": round(duration, 2),
                    "overall_status": overall_status,
                    "summary.success_count": success_count,
                    "summary.failure_count": failure_count,
                    "resource_statuses": self.resource_results,
                }
            }
            try:
                self.collection.update_one({'run_id': self.run_id}, log_update)
            except PyMongoError as e:
                logger.error(f"[OpLogger:{self.run_id}] Final OpLog update failed: {e}")
        logger.info(f"Operation '{self.command}' (run_id: {self.run_id}) finalized. "
                    f"Status: {overall_status}, success={success_count}, failed={failure_count}.")

        self._is_finalized = True
        self.close_connection()
        remove_handler_reference(self.run_id)

    def close_connection(self):
        if self.client:
            self.client.close()
            logger.debug(f"[OpLogger:{self.run_id}] Closed OpLogger MongoDB connection.")
        self.client = None
        self.collection = None
