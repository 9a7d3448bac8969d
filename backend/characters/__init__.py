"""
Characters — personas, backend profiles and the registry that maps one to the other.

    from characters import build_registry
    registry = build_registry(get_settings())
    registry.profiles_for("kimi")
"""

from characters.base import Ability, BackendProfile, Character
from characters.builtin import BUILTIN_CHARACTERS, register_builtin
from characters.registry import CharacterRegistry


def build_registry(settings, cache=None) -> CharacterRegistry:
    """Registry pre-loaded with the built-in characters."""
    return register_builtin(CharacterRegistry(settings, cache=cache))


__all__ = [
    "Ability",
    "BackendProfile",
    "Character",
    "CharacterRegistry",
    "BUILTIN_CHARACTERS",
    "build_registry",
]
