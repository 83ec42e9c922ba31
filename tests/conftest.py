import pytest


@pytest.fixture
def slots_per_epoch():
    return 4


@pytest.fixture
def public_keys():
    return tuple(bytes([i]) * 48 for i in range(1, 4))


@pytest.fixture
def public_key(public_keys):
    return public_keys[0]
