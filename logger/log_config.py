import logging
import sys
import datetime
import atexit
import traceback
import threading

import pymongo
from pymongo.errors import PyMongoError, ConnectionFailure

from constants import DB_NAME, LOG_COLLECTION
from db_utils import MONGO_URI

LOG_FORMAT = '%(asctime)s - %(name)s [%(levelname)s] %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Stores {run_id: BufferingMongoLogHandler instance}
_run_handlers = {}
_handler_lock = threading.Lock()


class BufferingMongoLogHandler(logging.Handler):
    """
    Log handler that buffers the records of one run_id and writes them
    into a single MongoDB document when flushed.
    """

    def __init__(self, level=logging.NOTSET, mongo_uri=MONGO_URI,
                 db_name=DB_NAME, collection_name=LOG_COLLECTION, run_id=None):
        super().__init__(level)
        self.mongo_uri = mongo_uri
        self.db_name = db_name
        self.collection_name = collection_name
        self.run_id = run_id
        self.buffer = []
        self._lock = threading.Lock()
        self.connection_failed = False
        self.client = None
        self.collection = None

        if not self.mongo_uri or not self.run_id:
            self.connection_failed = True
            print(f"ERROR: BufferingMongoLogHandler disabled for run {self.run_id}. "
                  f"Missing URI or run_id.", file=sys.stderr)

    def _connect(self):
        """Connects to MongoDB if not already connected. Returns True on success."""
        if self.collection is not None:
            return True
        if self.connection_failed:
            return False
        try:
            self.client = pymongo.MongoClient(self.mongo_uri, serverSelectionTimeoutMS=5000)
            self.client.admin.command('ping')
            self.collection = self.client[self.db_name][self.collection_name]
            return True
        except (ConnectionFailure, PyMongoError) as e:
            self.connection_failed = True
            print(f"ERROR: BufferingMongoLogHandler connection FAILED run {self.run_id}: {e}",
                  file=sys.stderr)
            if self.client:
                self.client.close()
            self.client = None
            self.collection = None
            return False

    def emit(self, record):
        try:
            log_entry = {
                "timestamp": datetime.datetime.now(datetime.timezone.utc),
                "level": record.levelname,
                "levelno": record.levelno,
                "message": self.format(record),
                "logger_name": record.name,
                "module": record.module,
                "lineno": record.lineno,
                "funcName": record.funcName,
            }
            if record.exc_info:
                log_entry['exc_text'] = "".join(traceback.format_exception(*record.exc_info))
            with self._lock:
                self.buffer.append(log_entry)
        except Exception:
            self.handleError(record)

    def flush_logs(self, end_time=None):
        """Writes the buffered records to the run's document. Returns True on success."""
        with self._lock:
            if not self.buffer:
                return True
            logs_to_flush = self.buffer[:]
            self.buffer.clear()

        if not self._connect():
            with self._lock:
                self.buffer = logs_to_flush + self.buffer
            return False

        set_dict = {'last_log_time': logs_to_flush[-1]['timestamp']}
        if end_time:
            set_dict['end_time'] = end_time
        update_operation = {
            '$push': {'messages': {'$each': logs_to_flush}},
            '$setOnInsert': {'run_id': self.run_id, 'first_log_time': logs_to_flush[0]['timestamp']},
            '$set': set_dict,
            '$inc': {'log_count': len(logs_to_flush)},
        }
        try:
            self.collection.update_one({'run_id': self.run_id}, update_operation, upsert=True)
            return True
        except PyMongoError as e:
            print(f"ERROR: Failed writing logs Mongo run {self.run_id}: {e}", file=sys.stderr)
            with self._lock:
                self.buffer = logs_to_flush + self.buffer
            return False

    def close(self):
        """Flushes remaining logs and closes the MongoDB connection."""
        self.flush_logs()
        if self.client:
            self.client.close()
        self.client = None
        self.collection = None
        self.connection_failed = True
        super().close()


def remove_handler_reference(run_id):
    with _handler_lock:
        _run_handlers.pop(run_id, None)


def flush_mongo_handler_for_run(run_id, end_time=None):
    """Flushes the BufferingMongoLogHandler for a specific run_id."""
    with _handler_lock:
        handler = _run_handlers.get(run_id)
    if handler is not None:
        return handler.flush_logs(end_time=end_time)
    return False


def _cleanup_all_handlers():
    with _handler_lock:
        handlers = list(_run_handlers.values())
        _run_handlers.clear()
    for handler in handlers:
        handler.close()


atexit.register(_cleanup_all_handlers)


def setup_logger(run_id=None, verbose=False):
    """
    Configures the main 'vsprov' logger.

    Should be called once per run after OperationLogger initialization.
    Other modules use `logging.getLogger('vsprov.<area>')` and propagate here.

    :param run_id: Run identifier; enables buffered MongoDB logging when MONGO_HOST is set.
    :param verbose: Log DEBUG records to the console.
    """
    logger = logging.getLogger('vsprov')
    logger.setLevel(logging.DEBUG)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    # Prevents duplicate handlers if called more than once.
    for handler in list(logger.handlers):
        if isinstance(handler, (logging.StreamHandler, BufferingMongoLogHandler)):
            logger.removeHandler(handler)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if run_id and MONGO_URI:
        with _handler_lock:
            if run_id not in _run_handlers:
                mongo_handler = BufferingMongoLogHandler(level=logging.DEBUG, run_id=run_id)
                mongo_handler.setFormatter(formatter)
                logger.addHandler(mongo_handler)
                _run_handlers[run_id] = mongo_handler
            elif _run_handlers[run_id] not in logger.handlers:
                logger.addHandler(_run_handlers[run_id])

    logger.propagate = False
    for name in list(logging.root.manager.loggerDict):
        if name.startswith('vsprov.'):
            sub_logger = logging.getLogger(name)
            sub_logger.setLevel(logging.NOTSET)
            sub_logger.propagate = True
    return logger
