import sqlite3

import numpy as np
import pytest

from sfm_match.io.colmap_db import array_to_blob, blob_to_array


def test_read_image_mappings(database, image_names):
    assert database.read_image_names() == image_names
    assert database.read_image_ids() == {name: i for i, name in image_names.items()}


def test_upsert_replaces_existing_row(database):
    first = np.array([[1, 2], [3, 4]], dtype=np.float32)
    second = np.array([[5, 6]], dtype=np.float32)
    database.upsert_row("keypoints", 1, 2, 2, array_to_blob(first, "float32"))
    database.upsert_row("keypoints", 1, 1, 2, array_to_blob(second, "float32"))
    database.commit()

    count = database.execute("SELECT COUNT(*) FROM keypoints").fetchone()[0]
    assert count == 1
    np.testing.assert_array_equal(database.read_keypoints(1), second)


def test_delete_all(database):
    database.upsert_row("matches", 10, 0, 2, b"")
    database.upsert_row("matches", 11, 0, 2, b"")
    database.delete_all("matches")
    database.commit()
    assert database.execute("SELECT COUNT(*) FROM matches").fetchone()[0] == 0


def test_unknown_table_rejected(database):
    with pytest.raises(ValueError):
        database.delete_all("images")
    with pytest.raises(ValueError):
        database.upsert_row("cameras", 1, 0, 2, b"")


def test_missing_rows_read_as_none(database):
    assert database.read_keypoints(42) is None
    assert database.read_matches(42) is None


def test_empty_blob_reads_as_empty_array(database):
    database.upsert_row("matches", 7, 0, 2, b"")
    assert database.read_matches(7).shape == (0, 2)


def test_blob_layout_is_little_endian():
    blob = array_to_blob(np.array([[1, 2]], dtype=np.int32), "int32")
    assert blob == b"\x01\x00\x00\x00\x02\x00\x00\x00"
    np.testing.assert_array_equal(blob_to_array(blob, "int32", (1, 2)), [[1, 2]])


def test_transaction_rolls_back_on_error(database):
    with pytest.raises(sqlite3.IntegrityError):
        with database.transaction():
            database.upsert_row("keypoints", 1, 0, 2, b"")
            database.add_image("0000.png", 1)  # duplicate name
    assert database.read_keypoints(1) is None
