"""
Minimal COLMAP database access (SQLite).

Only the parts of the schema that the correspondence exporter touches are
modelled: image ids/names for lookup, and the blob tables that hold
keypoints, matches and two-view geometries.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

import numpy as np

# Blob tables and the column holding their key.
BLOB_TABLES = {
    "keypoints": "image_id",
    "descriptors": "image_id",
    "matches": "pair_id",
    "two_view_geometries": "pair_id",
}

CREATE_CAMERAS_TABLE = """CREATE TABLE IF NOT EXISTS cameras (
    camera_id INTEGER PRIMARY KEY AUTOINCREMENT NOT NULL,
    model INTEGER NOT NULL,
    width INTEGER NOT NULL,
    height INTEGER NOT NULL,
    params BLOB,
    prior_focal_length INTEGER NOT NULL)"""

CREATE_IMAGES_TABLE = """CREATE TABLE IF NOT EXISTS images (
    image_id INTEGER PRIMARY KEY AUTOINCREMENT NOT NULL,
    name TEXT NOT NULL UNIQUE,
    camera_id INTEGER NOT NULL,
    FOREIGN KEY(camera_id) REFERENCES cameras(camera_id))"""

CREATE_KEYPOINTS_TABLE = """CREATE TABLE IF NOT EXISTS keypoints (
    image_id INTEGER PRIMARY KEY NOT NULL,
    rows INTEGER NOT NULL,
    cols INTEGER NOT NULL,
    data BLOB,
    FOREIGN KEY(image_id) REFERENCES images(image_id) ON DELETE CASCADE)"""

CREATE_DESCRIPTORS_TABLE = """CREATE TABLE IF NOT EXISTS descriptors (
    image_id INTEGER PRIMARY KEY NOT NULL,
    rows INTEGER NOT NULL,
    cols INTEGER NOT NULL,
    data BLOB,
    FOREIGN KEY(image_id) REFERENCES images(image_id) ON DELETE CASCADE)"""

CREATE_MATCHES_TABLE = """CREATE TABLE IF NOT EXISTS matches (
    pair_id INTEGER PRIMARY KEY NOT NULL,
    rows INTEGER NOT NULL,
    cols INTEGER NOT NULL,
    data BLOB)"""

CREATE_TWO_VIEW_GEOMETRIES_TABLE = """CREATE TABLE IF NOT EXISTS two_view_geometries (
    pair_id INTEGER PRIMARY KEY NOT NULL,
    rows INTEGER NOT NULL,
    cols INTEGER NOT NULL,
    data BLOB,
    config INTEGER NOT NULL,
    F BLOB,
    E BLOB,
    H BLOB,
    qvec BLOB,
    tvec BLOB)"""


def array_to_blob(array: np.ndarray, dtype: str) -> bytes:
    """Pack an array row-major into little-endian bytes of the given dtype."""
    return np.ascontiguousarray(array, dtype=np.dtype(dtype).newbyteorder("<")).tobytes()


def blob_to_array(blob: Optional[bytes], dtype: str, shape=(-1,)) -> np.ndarray:
    """Inverse of array_to_blob; a NULL or empty blob gives an empty array."""
    dt = np.dtype(dtype).newbyteorder("<")
    if not blob:
        return np.zeros((0,) + tuple(shape[1:]), dtype=dtype)
    return np.frombuffer(blob, dtype=dt).astype(dtype).reshape(*shape)


def _key_column(table: str) -> str:
    if table not in BLOB_TABLES:
        raise ValueError(
            f"Unknown blob table {table!r}; expected one of {sorted(BLOB_TABLES)}"
        )
    return BLOB_TABLES[table]


class ColmapDatabase(sqlite3.Connection):
    """
    sqlite3 connection with helpers for the COLMAP schema.

    Open with ColmapDatabase.connect(path). Methods do not commit on their
    own; use commit()/rollback() or the transaction() context manager.
    """

    @classmethod
    def connect(cls, database_path: str) -> "ColmapDatabase":
        return sqlite3.connect(database_path, factory=cls)

    def create_tables(self) -> None:
        for ddl in (
            CREATE_CAMERAS_TABLE,
            CREATE_IMAGES_TABLE,
            CREATE_KEYPOINTS_TABLE,
            CREATE_DESCRIPTORS_TABLE,
            CREATE_MATCHES_TABLE,
            CREATE_TWO_VIEW_GEOMETRIES_TABLE,
        ):
            self.execute(ddl)
        self.commit()

    @contextmanager
    def transaction(self) -> Iterator["ColmapDatabase"]:
        """Commit everything done in the block, or roll it all back on error."""
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        else:
            self.commit()

    def add_camera(
        self,
        model: int,
        width: int,
        height: int,
        params: np.ndarray,
        prior_focal_length: bool = False,
        camera_id: Optional[int] = None,
    ) -> int:
        cursor = self.execute(
            "INSERT INTO cameras VALUES (?, ?, ?, ?, ?, ?)",
            (
                camera_id,
                model,
                width,
                height,
                array_to_blob(np.asarray(params), "float64"),
                int(prior_focal_length),
            ),
        )
        return cursor.lastrowid

    def add_image(self, name: str, camera_id: int, image_id: Optional[int] = None) -> int:
        cursor = self.execute(
            "INSERT INTO images (image_id, name, camera_id) VALUES (?, ?, ?)",
            (image_id, name, camera_id),
        )
        return cursor.lastrowid

    def read_image_names(self) -> Dict[int, str]:
        """Return the image_id -> name mapping from the images table."""
        rows = self.execute("SELECT image_id, name FROM images").fetchall()
        return {int(image_id): name for image_id, name in rows}

    def read_image_ids(self) -> Dict[str, int]:
        """Return the name -> image_id mapping from the images table."""
        return {name: image_id for image_id, name in self.read_image_names().items()}

    def delete_all(self, table: str) -> None:
        _key_column(table)
        self.execute(f"DELETE FROM {table}")

    def upsert_row(self, table: str, key: int, rows: int, cols: int, data: bytes) -> None:
        """Replace the row stored under `key` with a new (rows, cols, data) record."""
        key_column = _key_column(table)
        if table == "two_view_geometries":
            raise ValueError("two_view_geometries rows carry geometry; only deletion is supported")
        self.execute(f"DELETE FROM {table} WHERE {key_column} = ?", (int(key),))
        self.execute(
            f"INSERT INTO {table} ({key_column}, rows, cols, data) VALUES (?, ?, ?, ?)",
            (int(key), int(rows), int(cols), data),
        )

    def _read_blob(self, table: str, key: int, dtype: str) -> Optional[np.ndarray]:
        key_column = _key_column(table)
        row = self.execute(
            f"SELECT rows, cols, data FROM {table} WHERE {key_column} = ?", (int(key),)
        ).fetchone()
        if row is None:
            return None
        rows, cols, data = row
        return blob_to_array(data, dtype, (rows, cols))

    def read_keypoints(self, image_id: int) -> Optional[np.ndarray]:
        """(rows, cols) float32 keypoints of an image, or None if absent."""
        return self._read_blob("keypoints", image_id, "float32")

    def read_matches(self, pair_id: int) -> Optional[np.ndarray]:
        """(rows, 2) int32 matches of an image pair, or None if absent."""
        return self._read_blob("matches", pair_id, "int32")


__all__ = [
    "BLOB_TABLES",
    "ColmapDatabase",
    "array_to_blob",
    "blob_to_array",
]
