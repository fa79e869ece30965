import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from ichat_archive.config import COPY_DIR_NAME, Settings
from ichat_archive.extractor import RunContext, ThreadIdentityPolicy
from ichat_archive.participants import SelfMatchPolicy


def _settings(tmp_path: Path, **overrides) -> Settings:
    values = {"ARCHIVE_ROOT": str(tmp_path / "archive")}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_defaults(tmp_path):
    settings = _settings(tmp_path)
    assert settings.archive_root == tmp_path / "archive"
    assert settings.archive_extension == "ichat"
    assert settings.self_match_policy == "exact"
    assert settings.thread_identity_policy == "relay_subject"
    assert settings.relay_identity_prefix == "e:"
    assert settings.copy_target_dir is None


def test_copy_target_defaults_beside_attachments(tmp_path):
    settings = _settings(tmp_path, ATTACHMENTS_ROOT=str(tmp_path / "Messages" / "Attachments"))
    assert settings.copy_target_dir == tmp_path / "Messages" / COPY_DIR_NAME


def test_copy_target_override(tmp_path):
    settings = _settings(
        tmp_path,
        ATTACHMENTS_ROOT=str(tmp_path / "Attachments"),
        COPY_TARGET_DIR=str(tmp_path / "copies"),
    )
    assert settings.copy_target_dir == tmp_path / "copies"


def test_empty_strings_become_none(tmp_path):
    settings = _settings(tmp_path, EXTERNAL_ATTACHMENT_LIBRARY="  ", START_YEAR="")
    assert settings.external_attachment_library is None
    assert settings.start_year is None


def test_extension_is_normalized(tmp_path):
    assert _settings(tmp_path, ARCHIVE_EXTENSION=".chat").archive_extension == "chat"
    with pytest.raises(ValidationError):
        _settings(tmp_path, ARCHIVE_EXTENSION=" . ")


def test_year_range_validation(tmp_path):
    settings = _settings(tmp_path, START_YEAR="2019", END_YEAR="2021")
    assert (settings.start_year, settings.end_year) == (2019, 2021)
    with pytest.raises(ValidationError):
        _settings(tmp_path, START_YEAR="2021", END_YEAR="2019")


def test_unknown_policy_rejected(tmp_path):
    with pytest.raises(ValidationError):
        _settings(tmp_path, SELF_MATCH_POLICY="fuzzy")


def test_handle_names_file(tmp_path):
    handles = tmp_path / "chat_handles.json"
    handles.write_text(json.dumps({"+15550003": "Carol"}), encoding="utf-8")
    settings = _settings(tmp_path, HANDLE_NAMES_FILE=str(handles))
    assert settings.load_handle_names() == {"15550003": "Carol"}
    assert _settings(tmp_path).load_handle_names() == {}


def test_run_context_from_settings(tmp_path):
    settings = _settings(
        tmp_path,
        ATTACHMENTS_ROOT=str(tmp_path / "Attachments"),
        EXTERNAL_ATTACHMENT_LIBRARY=str(tmp_path / "Library"),
        SELF_MATCH_POLICY="prefix",
        THREAD_IDENTITY_POLICY="sender",
        ARCHIVE_TIMEZONE="Europe/Berlin",
    )
    run = RunContext.from_settings(settings)
    assert run.self_match is SelfMatchPolicy.PREFIX
    assert run.thread_identity is ThreadIdentityPolicy.SENDER
    assert run.timezone == "Europe/Berlin"
    assert run.attachments.copy_target_dir == tmp_path / COPY_DIR_NAME
    assert run.attachments.ledger.count() == 0


def test_unknown_timezone_rejected(tmp_path):
    assert _settings(tmp_path, ARCHIVE_TIMEZONE="America/New_York").archive_timezone == "America/New_York"
    with pytest.raises(ValidationError):
        _settings(tmp_path, ARCHIVE_TIMEZONE="Not/AZone")


def test_library_without_copy_target_rejected(tmp_path):
    with pytest.raises(ValidationError):
        _settings(tmp_path, EXTERNAL_ATTACHMENT_LIBRARY=str(tmp_path / "Library"))
    settings = _settings(
        tmp_path,
        EXTERNAL_ATTACHMENT_LIBRARY=str(tmp_path / "Library"),
        COPY_TARGET_DIR=str(tmp_path / "copies"),
    )
    assert settings.copy_target_dir == tmp_path / "copies"
