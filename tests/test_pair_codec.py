import itertools

from sfm_match.corr.pair_codec import MAX_IMAGE_ID, image_ids_to_pair_id, pair_id_to_image_ids


def test_known_pair_id():
    assert image_ids_to_pair_id(1, 5) == 2147483647 * 1 + 5 == 2147483652


def test_symmetric():
    for a, b in itertools.product(range(1, 12), repeat=2):
        assert image_ids_to_pair_id(a, b) == image_ids_to_pair_id(b, a)


def test_injective_over_small_ids():
    keys = {image_ids_to_pair_id(a, b) for a, b in itertools.combinations(range(1, 60), 2)}
    assert len(keys) == len(list(itertools.combinations(range(1, 60), 2)))


def test_large_ids_use_64_bit_range():
    pair_id = image_ids_to_pair_id(MAX_IMAGE_ID - 1, MAX_IMAGE_ID - 2)
    assert pair_id > 2**32
    assert pair_id < 2**63


def test_decode():
    assert pair_id_to_image_ids(image_ids_to_pair_id(7, 3)) == (3, 7)
