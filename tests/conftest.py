import pytest

from sfm_match.io.colmap_db import ColmapDatabase


def make_database(path, image_names):
    db = ColmapDatabase.connect(str(path))
    db.create_tables()
    camera_id = db.add_camera(1, 1920, 1080, [1000.0, 960.0, 540.0])
    for image_id, name in image_names.items():
        db.add_image(name, camera_id, image_id=image_id)
    db.commit()
    return db


@pytest.fixture
def image_names():
    return {1: "0000.png", 2: "0001.png", 3: "0002.png"}


@pytest.fixture
def database(tmp_path, image_names):
    db = make_database(tmp_path / "database.db", image_names)
    yield db
    db.close()
