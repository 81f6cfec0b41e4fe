import jax
from beartype import beartype
from beartype.typing import List

__all__ = ["make_key", "split_key"]


@beartype
def make_key(seed: int) -> jax.Array:
    """
    Create an explicit JAX random key.

    Every stochastic component in firecarbon takes a key argument instead of
    reading global random state, so two calls with keys made from the same
    seed produce identical results.

    Args:
        seed: The seed value to use.

    Returns:
        A ``jax.random.PRNGKey``.
    """
    return jax.random.PRNGKey(seed)


@beartype
def split_key(key: jax.Array, num: int = 2) -> List[jax.Array]:
    """Split ``key`` into ``num`` independent subkeys."""
    return list(jax.random.split(key, num))
