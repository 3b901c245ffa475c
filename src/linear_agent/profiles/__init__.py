"""Prompt profile models and loader exports."""

from .loader import ProfileLoadError, ProfileLoader, PromptProfile, load_profiles
from .models import DEFAULT_PROFILE

__all__ = [
    "DEFAULT_PROFILE",
    "PromptProfile",
    "ProfileLoadError",
    "ProfileLoader",
    "load_profiles",
]
