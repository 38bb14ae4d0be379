import cv2
import numpy as np

from sfm_match.cli.main import main
from sfm_match.corr.pair_codec import image_ids_to_pair_id
from sfm_match.io.colmap_db import ColmapDatabase

from conftest import make_database

K = np.array([[1000.0, 0.0, 960.0], [0.0, 1000.0, 540.0], [0.0, 0.0, 1.0]])


def write_projection_files(root, num_cameras):
    root.mkdir()
    for cam_id in range(num_cameras):
        Rt = np.hstack([np.eye(3), np.array([[10.0 * cam_id], [0.0], [5000.0]])])
        P = np.vstack([K @ Rt, [0.0, 0.0, 0.0, 1.0]])
        fs = cv2.FileStorage(str(root / f"{cam_id}.xml"), cv2.FILE_STORAGE_WRITE)
        fs.write("P", P)
        fs.release()


def synthetic_args(tmp_path):
    return [
        "--project-path", str(tmp_path),
        "--xml-path", str(tmp_path / "xml_gt" / "%d.xml"),
        "--max-points", "20",
        "--axis-range", "-100", "100", "-100", "100", "0", "100",
        "--seed", "0",
    ]


def test_synthetic_export(tmp_path, image_names):
    make_database(tmp_path / "database.db", image_names).close()
    write_projection_files(tmp_path / "xml_gt", 3)

    assert main(synthetic_args(tmp_path) + ["--visualize"]) == 0

    text = (tmp_path / "match.txt").read_text(encoding="utf-8")
    blocks = text.split("\n\n")
    assert [b.splitlines()[0] for b in blocks] == [
        "0000.png 0001.png",
        "0000.png 0002.png",
        "0001.png 0002.png",
    ]
    # Every point is seen by all three cameras.
    assert all(len(b.splitlines()) == 21 for b in blocks)

    assert len((tmp_path / "log.txt").read_text().splitlines()) == 20
    assert (tmp_path / "match_graph.html").exists()

    db = ColmapDatabase.connect(str(tmp_path / "database.db"))
    assert db.read_keypoints(1).shape[1] == 2
    assert db.read_matches(image_ids_to_pair_id(2, 3)).shape == (20, 2)
    db.close()


def test_tolerance_and_atomic_flags(tmp_path, image_names):
    make_database(tmp_path / "database.db", image_names).close()
    write_projection_files(tmp_path / "xml_gt", 3)

    assert main(synthetic_args(tmp_path) + ["--tolerance", "0.5", "--atomic"]) == 0
    assert (tmp_path / "match.txt").exists()


def test_missing_database(tmp_path, capsys):
    assert main(["--project-path", str(tmp_path)]) == 1
    assert "COLMAP database not found" in capsys.readouterr().out


def test_aruco_requires_image_path(tmp_path, image_names):
    make_database(tmp_path / "database.db", image_names).close()
    assert main(["--project-path", str(tmp_path), "--aruco"]) == 1
