"""JSON file persistence utilities.

Used for files that leave the database: the extension repository
``index.json`` and exported reports.
"""

import os
from json import JSONDecodeError, dump, load
from pathlib import Path
from typing import Any

from utils.exceptions import PersistenceError


class JSONStore:
    """Loads and saves one JSON document.

    Writes go through a temporary file in the same directory followed by a
    rename, so a reader never sees a half-written document.
    """

    def __init__(self, file_path: Path) -> None:
        self.file_path = Path(file_path)

    def load(self, default: Any = None) -> Any:
        """Load JSON data from file.

        Args:
            default: Value returned when the file does not exist

        Raises:
            PersistenceError: On unreadable or malformed files
        """
        try:
            with self.file_path.open(encoding="utf-8") as f:
                return load(f)
        except FileNotFoundError:
            return default
        except JSONDecodeError as e:
            raise PersistenceError(f"Malformed JSON in {self.file_path}: {e}") from e
        except PermissionError as e:
            raise PersistenceError(f"Permission denied reading {self.file_path}") from e

    def save(self, data: Any, *, indent: int | None = 2) -> None:
        """Save JSON data to file, creating parent directories.

        Raises:
            PersistenceError: On serialization or permission errors
        """
        tmp_path = self.file_path.with_name(f".{self.file_path.name}.tmp")
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as f:
                dump(data, f, indent=indent)
            os.replace(tmp_path, self.file_path)
        except TypeError as e:
            tmp_path.unlink(missing_ok=True)
            raise PersistenceError(f"Cannot serialize data: {e}") from e
        except PermissionError as e:
            raise PersistenceError(f"Permission denied writing {self.file_path}") from e

    def exists(self) -> bool:
        return self.file_path.exists()
