# prompt_debugger/prompt_library.py

import hashlib
import threading
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional

import commentjson

from prompt_debugger.base_utils import BaseUtils, logger
from prompt_debugger.errors import ConfigurationError, PromptIntegrityError

DEFAULT_LIBRARY_DIR = Path(__file__).resolve().parent / "prompts"
MANIFEST_NAME = "manifest.json"

REQUIRED_TEMPLATES = (
    "system",
    "architecture",
    "failure_types",
    "anti_patterns",
    "output_format",
    "validation_task",
)


def compute_checksum(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class PromptLibrary(BaseUtils):
    """
    Immutable set of named prompt templates.

    When `checksums` is given every template is verified against it and a
    mismatch raises PromptIntegrityError. Agents receive the library through
    their constructor, so tests can pass fixture templates.
    """

    def __init__(
        self,
        templates: Mapping[str, str],
        checksums: Optional[Mapping[str, str]] = None,
        *,
        version: str = "custom",
    ):
        templates = dict(templates)
        missing = [name for name in REQUIRED_TEMPLATES if name not in templates]
        if missing:
            raise PromptIntegrityError(f"Prompt library is missing template(s): {', '.join(missing)}")

        if checksums is not None:
            for name, text in templates.items():
                expected = checksums.get(name)
                if expected is None:
                    raise PromptIntegrityError(f"No checksum recorded for template '{name}'")
                actual = compute_checksum(text)
                if actual != expected.lower():
                    raise PromptIntegrityError(
                        f"Checksum mismatch for template '{name}'",
                        template=name, expected=expected, actual=actual,
                    )

        self._templates = MappingProxyType(templates)
        self.version = version
        joined = "\n".join(f"{name}:{compute_checksum(templates[name])}" for name in sorted(templates))
        self.digest = hashlib.sha256(joined.encode("utf-8")).hexdigest()[:12]

    def names(self):
        return tuple(self._templates.keys())

    def get(self, name: str) -> str:
        try:
            return self._templates[name]
        except KeyError:
            raise ConfigurationError(f"Unknown prompt template '{name}'") from None

    def render(self, name: str, **kwargs) -> str:
        return self.unsafe_string_format(self.get(name), print_unused_keys_report=False, **kwargs)

    @classmethod
    def load_dir(cls, directory) -> "PromptLibrary":
        """
        Loads templates listed in `<directory>/manifest.json`:

            {"version": "...", "templates": {"system": {"file": "system.txt", "sha256": "..."}}}
        """
        directory = Path(directory)
        manifest_path = directory / MANIFEST_NAME
        if not manifest_path.exists():
            raise ConfigurationError(f"Prompt manifest not found at '{manifest_path}'")
        with manifest_path.open("r", encoding="utf-8") as f:
            try:
                manifest = commentjson.load(f)
            except Exception as e:
                raise ConfigurationError(f"Prompt manifest '{manifest_path}' could not be parsed: {e}") from e

        entries = manifest.get("templates") or {}
        templates, checksums = {}, {}
        for name, entry in entries.items():
            path = directory / entry["file"]
            if not path.exists():
                raise ConfigurationError(f"Prompt template file not found: '{path}'")
            templates[name] = path.read_bytes().decode("utf-8")
            checksums[name] = entry.get("sha256", "")

        library = cls(templates, checksums, version=str(manifest.get("version", "unversioned")))
        logger.info(f"Loaded prompt library {library.version} ({library.digest}) from {directory}")
        return library


_default_lock = threading.Lock()
_default_library: Optional[PromptLibrary] = None


def default_prompt_library(directory=None) -> PromptLibrary:
    """Process-wide library, loaded and verified once."""
    global _default_library
    with _default_lock:
        if _default_library is None:
            _default_library = PromptLibrary.load_dir(directory or DEFAULT_LIBRARY_DIR)
        return _default_library
