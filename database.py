"""
Flat-file database

The whole dataset lives in one JSON document with a top-level array per
collection. Every request loads the document; writes replace the file.
"""

import copy
import json
import logging
import os
import stat
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from bson import ObjectId

from errors import StorageError

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("DB_PATH", "db.json")
DEFAULT_FILE_MODE = 0o644

COLLECTIONS = ("doctors", "patients", "appointments", "prescriptions", "reviews")

Document = Dict[str, List[Dict[str, Any]]]

SEED_DATA: Document = {
    "doctors": [
        {
            "id": "1",
            "name": "Dr. Robert Williams",
            "email": "robert@healthplus.com",
            "password": "doctor2023",
            "phone": "+1-555-0101",
            "specialty": "Cardiology",
            "qualifications": "MD, FACC",
            "experience": "15 years",
            "clinicAddress": "Heart Care Center, 123 Medical Plaza, New York",
            "rating": 4.8,
            "reviewCount": 156,
            "consultationFee": 150,
            "videoConsultationFee": 100,
            "callConsultationFee": 75,
            "availability": {
                "clinic": ["Monday", "Wednesday", "Friday"],
                "online": ["Tuesday", "Thursday", "Saturday"],
            },
            "timeSlots": ["09:00", "10:00", "11:00", "14:00", "15:00", "16:00"],
            "about": "Experienced cardiologist specializing in heart disease prevention and treatment.",
            "consultationType": ["clinic", "video", "call"],
        },
        {
            "id": "2",
            "name": "Dr. Jennifer Lee",
            "email": "jennifer@healthplus.com",
            "password": "doctor2023",
            "phone": "+1-555-0102",
            "specialty": "Dermatology",
            "qualifications": "MD, FAAD",
            "experience": "12 years",
            "clinicAddress": "Skin Care Clinic, 456 Health Street, Los Angeles",
            "rating": 4.9,
            "reviewCount": 203,
            "consultationFee": 120,
            "availability": {
                "clinic": ["Monday", "Tuesday", "Thursday"],
                "online": ["Wednesday", "Friday", "Saturday"],
            },
            "timeSlots": ["08:00", "09:00", "10:00", "13:00", "14:00", "15:00"],
            "about": "Board-certified dermatologist with expertise in skin conditions and cosmetic procedures.",
            "consultationType": ["clinic", "video", "call"],
        },
    ],
    "patients": [
        {
            "id": "1",
            "name": "Emma Thompson",
            "email": "emma@healthplus.com",
            "password": "patient2023",
            "phone": "+1-555-1001",
        }
    ],
    "appointments": [],
    "prescriptions": [],
    "reviews": [],
}


def new_id() -> str:
    return str(ObjectId())


def empty_document() -> Document:
    return {name: [] for name in COLLECTIONS}


def normalize(doc: Any) -> Document:
    if not isinstance(doc, dict):
        raise StorageError("Database file is corrupt")
    for name in COLLECTIONS:
        if not isinstance(doc.get(name), list):
            doc[name] = []
    return doc


class Store(ABC):
    """Storage interface: load the whole document, save the whole document."""

    def __init__(self):
        self._lock = threading.RLock()

    @abstractmethod
    def load(self) -> Document:
        ...

    @abstractmethod
    def save(self, doc: Document) -> None:
        ...

    @contextmanager
    def transaction(self) -> Iterator[Document]:
        # Nothing is saved when the body raises.
        with self._lock:
            doc = self.load()
            yield doc
            self.save(doc)


class MemoryStore(Store):
    def __init__(self, data: Optional[Document] = None):
        super().__init__()
        self._data = normalize(copy.deepcopy(data) if data is not None else empty_document())
        self.saves = 0

    def load(self) -> Document:
        return copy.deepcopy(self._data)

    def save(self, doc: Document) -> None:
        self._data = normalize(copy.deepcopy(doc))
        self.saves += 1


class JsonFileStore(Store):
    def __init__(self, path: str = DB_PATH, seed: Optional[Document] = None):
        super().__init__()
        self.path = path
        self.seed = SEED_DATA if seed is None else seed

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def ensure_exists(self) -> bool:
        """Create the file from the seed if it is missing. Returns True when created."""
        with self._lock:
            if self.exists():
                return False
            self.save(copy.deepcopy(self.seed))
            logger.info("Created %s with initial data", self.path)
            return True

    def load(self) -> Document:
        self.ensure_exists()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error("Database file %s is corrupt: %s", self.path, e)
            raise StorageError("Database file is corrupt") from e
        except OSError as e:
            logger.error("Failed to read %s: %s", self.path, e)
            raise StorageError("Failed to read database") from e
        return normalize(data)

    def _file_mode(self) -> int:
        try:
            return stat.S_IMODE(os.stat(self.path).st_mode)
        except FileNotFoundError:
            return DEFAULT_FILE_MODE

    def save(self, doc: Document) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            mode = self._file_mode()
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".db-", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(doc, f, indent=2)
                # mkstemp creates 0600; keep the store's own permissions
                os.chmod(tmp_path, mode)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
        except OSError as e:
            logger.error("Failed to write %s: %s", self.path, e)
            raise StorageError("Failed to write database") from e


_store: Optional[Store] = None


def get_store() -> Store:
    global _store
    if _store is None:
        _store = JsonFileStore(DB_PATH)
    return _store
