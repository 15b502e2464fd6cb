"""Anonymous identity for this device.

The tag is cached in a small YAML file so it survives restarts. Regenerating
it is an explicit, irreversible break: questions asked under the old tag are
not touched and from then on look like somebody else's.

Environment variables:
    QBOX_STATE_DIR — directory holding identity.yaml (default ~/.qbox)
"""

import logging
import os
import random
import time
from pathlib import Path
from typing import Optional

import yaml

from qbox.models.room import ViewerRole

logger = logging.getLogger(__name__)

TAG_ANIMALS = ["Panda", "Tiger", "Lion", "Eagle", "Dolphin", "Fox", "Wolf", "Bear", "Koala", "Owl"]


def default_store_path() -> Path:
    state_dir = os.getenv("QBOX_STATE_DIR") or str(Path.home() / ".qbox")
    return Path(state_dir) / "identity.yaml"


def generate_participant_tag(rng: Optional[random.Random] = None) -> str:
    """A readable random tag such as 'Koala#4821'."""
    rng = rng or random.SystemRandom()
    return f"{rng.choice(TAG_ANIMALS)}#{rng.randint(1000, 9999)}"


def generate_instructor_tag(now_ms: Optional[int] = None) -> str:
    """A time-derived label such as 'Lecturer 0417' for instructor-run rooms."""
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    return f"Lecturer {str(now_ms)[-4:]}"


class IdentityProvider:
    """Derives and caches the anonymous tag for this device."""

    def __init__(self, store_path: Optional[Path] = None):
        self._path = Path(store_path) if store_path else default_store_path()
        self._tag: Optional[str] = None
        self._loaded = False

    @property
    def store_path(self) -> Path:
        return self._path

    @property
    def current_tag(self) -> Optional[str]:
        self._load()
        return self._tag

    def _load(self):
        if self._loaded:
            return
        self._loaded = True
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            return
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Could not read identity from {self._path}: {e}")
            return

        tag = data.get("tag") if isinstance(data, dict) else None
        if isinstance(tag, str) and tag.strip():
            self._tag = tag.strip()
        else:
            logger.warning(f"Ignoring malformed identity file at {self._path}")

    def _save(self, tag: str):
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, "w", encoding="utf-8") as f:
            yaml.safe_dump({"tag": tag}, f)
        self._tag = tag

    def get_or_create_tag(self, role: ViewerRole = ViewerRole.PARTICIPANT) -> str:
        """Return the cached tag, creating one for the given role on first use."""
        self._load()
        if self._tag:
            return self._tag

        if role == ViewerRole.INSTRUCTOR:
            tag = generate_instructor_tag()
        else:
            tag = generate_participant_tag()
        self._save(tag)
        logger.info(f"Created anonymous tag {tag}.")
        return tag

    def regenerate_tag(self, confirmed: bool = False) -> Optional[str]:
        """Replace the tag with a fresh one.

        Args:
            confirmed: The user acknowledged losing the link to earlier questions.

        Returns:
            The new tag, or None if not confirmed (nothing changes).
        """
        if not confirmed:
            logger.info("Tag regeneration not confirmed; keeping current tag.")
            return None

        self._load()
        old = self._tag
        tag = generate_participant_tag()
        while tag == old:
            tag = generate_participant_tag()
        self._save(tag)
        logger.info(f"Anonymous tag regenerated ({old} -> {tag}).")
        return tag

    def clear(self):
        """Forget the tag entirely (logout)."""
        self._loaded = True
        self._tag = None
        try:
            self._path.unlink()
        except FileNotFoundError:
            pass
        logger.info("Anonymous tag cleared.")
