import pytest

from prompt_debugger.errors import PromptIntegrityError
from prompt_debugger.prompt_library import DEFAULT_LIBRARY_DIR, REQUIRED_TEMPLATES, PromptLibrary, compute_checksum


def _templates() -> dict:
    return {name: f"{name} text {{OUTPUT_SCHEMA}}" for name in REQUIRED_TEMPLATES}


def test_bundled_library_verifies() -> None:
    library = PromptLibrary.load_dir(DEFAULT_LIBRARY_DIR)

    assert set(REQUIRED_TEMPLATES) <= set(library.names())
    assert len(library.digest) == 12


def test_checksum_mismatch_is_rejected() -> None:
    templates = _templates()
    checksums = {name: compute_checksum(text) for name, text in templates.items()}
    checksums["system"] = compute_checksum("something else")

    with pytest.raises(PromptIntegrityError):
        PromptLibrary(templates, checksums)


def test_missing_template_is_rejected() -> None:
    templates = _templates()
    del templates["validation_task"]

    with pytest.raises(PromptIntegrityError):
        PromptLibrary(templates)


def test_tampered_file_fails_to_load(tmp_path) -> None:
    for f in DEFAULT_LIBRARY_DIR.iterdir():
        (tmp_path / f.name).write_bytes(f.read_bytes())
    (tmp_path / "system.txt").write_text("You are a pirate.", encoding="utf-8")

    with pytest.raises(PromptIntegrityError):
        PromptLibrary.load_dir(tmp_path)


def test_render_only_replaces_known_placeholders() -> None:
    library = PromptLibrary({**_templates(), "output_format": 'Schema: {OUTPUT_SCHEMA} then {"a": 1} and {other}'})

    rendered = library.render("output_format", OUTPUT_SCHEMA="S")

    assert rendered == 'Schema: S then {"a": 1} and {other}'
