"""Persistent resource state, kept in a JSON file or in MongoDB."""

import copy
import json
import logging
import os

from pymongo.errors import PyMongoError

from constants import (DB_NAME, DEFAULT_STATE_FILE, STATE_BACKEND_FILE, STATE_BACKEND_MONGO,
                       STATE_COLLECTION, STATE_VERSION)
from db_utils import mongo_client
from errors import ProviderError

logger = logging.getLogger('vsprov.state')

STATE_DOCUMENT_ID = "vsprov"


def empty_state():
    return {"version": STATE_VERSION, "serial": 0, "resources": {}}


class StateStore:
    """
    Resource attribute maps keyed by address.

    Each entry holds "type", "name", "id", "attributes" and "dependencies".
    Subclasses implement _read and _write for a storage backend.
    """

    def __init__(self):
        self.document = empty_state()

    def _read(self):
        raise NotImplementedError

    def _write(self, document):
        raise NotImplementedError

    def load(self):
        document = self._read()
        if document is None:
            document = empty_state()
        if document.get("version") != STATE_VERSION:
            raise ProviderError(f"unsupported state version {document.get('version')}")
        document.setdefault("resources", {})
        document.setdefault("serial", 0)
        self.document = document
        return self

    def save(self):
        self.document["serial"] = self.document.get("serial", 0) + 1
        self._write(self.document)
        logger.debug(f"State saved (serial {self.document['serial']}).")

    @property
    def serial(self):
        return self.document.get("serial", 0)

    def get(self, address):
        entry = self.document["resources"].get(address)
        return copy.deepcopy(entry) if entry is not None else None

    def put(self, address, entry):
        self.document["resources"][address] = copy.deepcopy(entry)

    def remove(self, address):
        self.document["resources"].pop(address, None)

    def addresses(self):
        return list(self.document["resources"])


class FileStateStore(StateStore):
    def __init__(self, path=DEFAULT_STATE_FILE):
        super().__init__()
        self.path = path

    def _read(self):
        if not os.path.exists(self.path):
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise ProviderError(f"cannot read state file {self.path}: {e}") from e

    def _write(self, document):
        tmp_path = f"{self.path}.tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise ProviderError(f"cannot write state file {self.path}: {e}") from e


class MongoStateStore(StateStore):
    """State kept as one document in the vsprov_db.state collection."""

    def __init__(self, document_id=STATE_DOCUMENT_ID, uri=None):
        super().__init__()
        self.document_id = document_id
        self.uri = uri

    def _read(self):
        try:
            with mongo_client(self.uri) as client:
                if not client:
                    raise ProviderError("cannot load state: MongoDB connection failed")
                document = client[DB_NAME][STATE_COLLECTION].find_one({"_id": self.document_id})
        except PyMongoError as e:
            raise ProviderError(f"cannot load state from MongoDB: {e}") from e
        if document is not None:
            document.pop("_id", None)
        return document

    def _write(self, document):
        try:
            with mongo_client(self.uri) as client:
                if not client:
                    raise ProviderError("cannot save state: MongoDB connection failed")
                client[DB_NAME][STATE_COLLECTION].replace_one({"_id": self.document_id}, document, upsert=True)
        except PyMongoError as e:
            raise ProviderError(f"cannot save state to MongoDB: {e}") from e


def open_state(backend=None, path=None):
    """
    Builds and loads the state store selected by VSPROV_STATE_BACKEND.

    :param backend: 'file' or 'mongo'. Defaults to the environment, then 'file'.
    :param path: State file path for the file backend.
    """
    backend = backend or os.getenv("VSPROV_STATE_BACKEND", STATE_BACKEND_FILE)
    if backend == STATE_BACKEND_FILE:
        store = FileStateStore(path or os.getenv("VSPROV_STATE_FILE", DEFAULT_STATE_FILE))
    elif backend == STATE_BACKEND_MONGO:
        store = MongoStateStore()
    else:
        raise ProviderError(f"unknown state backend {backend!r}")
    return store.load()
