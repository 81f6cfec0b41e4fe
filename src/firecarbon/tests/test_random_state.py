import jax
import numpy as np

from firecarbon.random_state import make_key, split_key


def test_make_key_is_deterministic():
    np.testing.assert_array_equal(make_key(3), make_key(3))
    assert not np.array_equal(make_key(3), make_key(4))


def test_split_key():
    keys = split_key(make_key(0), num=3)
    assert len(keys) == 3
    draws = [float(jax.random.uniform(k)) for k in keys]
    assert len(set(draws)) == 3
