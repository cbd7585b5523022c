"""环节三：单文件转换流程、跳过与失败分类。"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import pytest
from PIL import Image

from conftest import FakeEngine, save_animated_webp, save_static_webp, write_fake_source
from webp_converter.core.config import RunConfig
from webp_converter.core.models import (
    HINT_CORRUPT_INPUT,
    HINT_DISK_SPACE,
    HINT_PERMISSION,
    REASON_ENCODER_ERROR,
    REASON_INVALID_OUTPUT,
    REASON_UNREADABLE_INPUT,
    STATUS_FAILED,
    STATUS_SKIPPED,
    STATUS_SUCCESS,
    CandidateFile,
)
from webp_converter.core.output_manager import OutputManager
from webp_converter.core.progress import ProgressCounter, ProgressUpdate
from webp_converter.core.run_log import RunLog
from webp_converter.processing.engine import diagnose_failure
from webp_converter.processing.pillow_engine import PillowEngine
from webp_converter.processing.worker import WorkerContext, convert_file


def make_context(
    engine,
    *,
    total: int = 1,
    delete_original: bool = False,
    log_dir: Optional[Path] = None,
    updates: Optional[list[ProgressUpdate]] = None,
) -> WorkerContext:
    return WorkerContext(
        config=RunConfig(delete_original=delete_original, engine="pillow"),
        engine=engine,
        counter=ProgressCounter(total),
        output_manager=OutputManager(),
        run_log=RunLog(log_dir),
        progress_callback=updates.append if updates is not None else None,
    )


def _leftover_partials(directory: Path) -> list[Path]:
    return [p for p in directory.iterdir() if p.name.endswith(".part")]


def test_success_writes_output_and_counts_once(tmp_path: Path) -> None:
    source = write_fake_source(tmp_path / "a.webp")
    updates: list[ProgressUpdate] = []
    context = make_context(FakeEngine(), updates=updates)

    outcome = convert_file(CandidateFile.from_path(source), context)

    assert outcome.status == STATUS_SUCCESS
    assert outcome.output_path == tmp_path / "a.jpg"
    assert (tmp_path / "a.jpg").read_bytes() == b"FAKE-jpg"
    assert outcome.bytes_in == source.stat().st_size
    assert outcome.bytes_out == len(b"FAKE-jpg")
    assert source.exists()
    assert context.counter.value == 1
    assert [u.completed for u in updates] == [1]
    assert _leftover_partials(tmp_path) == []


def test_existing_output_is_skipped_without_overwrite(tmp_path: Path) -> None:
    source = write_fake_source(tmp_path / "a.webp")
    existing = tmp_path / "a.jpg"
    existing.write_bytes(b"original")
    engine = FakeEngine()
    context = make_context(engine)

    outcome = convert_file(CandidateFile.from_path(source), context)

    assert outcome.status == STATUS_SKIPPED
    assert outcome.output_path == existing
    assert existing.read_bytes() == b"original"
    assert engine.encoded == []
    assert context.counter.value == 1


def test_existing_directory_counts_as_existing_output(tmp_path: Path) -> None:
    source = write_fake_source(tmp_path / "a.webp")
    (tmp_path / "a.jpg").mkdir()

    outcome = convert_file(CandidateFile.from_path(source), make_context(FakeEngine()))

    assert outcome.status == STATUS_SKIPPED


def test_unreadable_input_fails_without_output(tmp_path: Path) -> None:
    source = write_fake_source(tmp_path / "corrupt.webp", corrupt=True)
    engine = FakeEngine()
    context = make_context(engine)

    outcome = convert_file(CandidateFile.from_path(source), context)

    assert outcome.status == STATUS_FAILED
    assert outcome.reason == REASON_UNREADABLE_INPUT
    assert outcome.hint == HINT_CORRUPT_INPUT
    assert engine.encoded == []
    assert sorted(p.name for p in tmp_path.iterdir()) == ["corrupt.webp"]
    assert context.counter.value == 1


def test_encoder_error_is_classified_and_cleaned(tmp_path: Path) -> None:
    source = write_fake_source(tmp_path / "a.webp")
    context = make_context(FakeEngine(fail_detail="convert: No space left on device"))

    outcome = convert_file(CandidateFile.from_path(source), context)

    assert outcome.status == STATUS_FAILED
    assert outcome.reason == REASON_ENCODER_ERROR
    assert outcome.hint == HINT_DISK_SPACE
    assert "No space left" in (outcome.message or "")
    assert not (tmp_path / "a.jpg").exists()
    assert _leftover_partials(tmp_path) == []
    assert context.counter.value == 1


def test_invalid_output_is_removed(tmp_path: Path) -> None:
    source = write_fake_source(tmp_path / "a.webp")
    context = make_context(FakeEngine(write_garbage=True))

    outcome = convert_file(CandidateFile.from_path(source), context)

    assert outcome.status == STATUS_FAILED
    assert outcome.reason == REASON_INVALID_OUTPUT
    assert not (tmp_path / "a.jpg").exists()
    assert _leftover_partials(tmp_path) == []


def test_missing_output_is_invalid(tmp_path: Path) -> None:
    source = write_fake_source(tmp_path / "a.webp")

    outcome = convert_file(CandidateFile.from_path(source), make_context(FakeEngine(skip_write=True)))

    assert outcome.reason == REASON_INVALID_OUTPUT


def test_delete_original_after_success(tmp_path: Path) -> None:
    source = write_fake_source(tmp_path / "a.webp")
    log_dir = tmp_path / "logs"
    context = make_context(FakeEngine(), delete_original=True, log_dir=log_dir)

    outcome = convert_file(CandidateFile.from_path(source), context)
    context.run_log.close()

    assert outcome.status == STATUS_SUCCESS
    assert not source.exists()
    log_text = next(log_dir.iterdir()).read_text(encoding="utf-8")
    assert "已删除源文件" in log_text


def test_delete_failure_keeps_success(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    source = write_fake_source(tmp_path / "a.webp")
    original_unlink = Path.unlink

    def guarded_unlink(self: Path, missing_ok: bool = False) -> None:
        if self == source:
            raise PermissionError("Permission denied")
        original_unlink(self, missing_ok=missing_ok)

    monkeypatch.setattr(Path, "unlink", guarded_unlink)
    context = make_context(FakeEngine(), delete_original=True)

    outcome = convert_file(CandidateFile.from_path(source), context)

    assert outcome.status == STATUS_SUCCESS
    assert source.exists()
    assert outcome.message is not None and "删除源文件失败" in outcome.message


def test_unexpected_encoder_crash_removes_partial_and_logs(tmp_path: Path) -> None:
    source = write_fake_source(tmp_path / "a.webp")
    log_dir = tmp_path / "logs"
    context = make_context(FakeEngine(crash_after_write=True), log_dir=log_dir)

    outcome = convert_file(CandidateFile.from_path(source), context)
    context.run_log.close()

    assert outcome.status == STATUS_FAILED
    assert outcome.reason == REASON_ENCODER_ERROR
    assert "RuntimeError" in (outcome.message or "")
    assert outcome.output_path == tmp_path / "a.jpg"
    assert not (tmp_path / "a.jpg").exists()
    assert _leftover_partials(tmp_path) == []
    assert context.output_manager.cleanup_partials() == 0
    assert context.counter.value == 1
    log_text = next(log_dir.iterdir()).read_text(encoding="utf-8")
    assert "✗ 错误" in log_text
    assert "encoder crashed mid-write" in log_text


def test_cancelled_context_does_not_encode(tmp_path: Path) -> None:
    source = write_fake_source(tmp_path / "a.webp")
    engine = FakeEngine()
    context = make_context(engine)
    context.cancel_event.set()

    outcome = convert_file(CandidateFile.from_path(source), context)

    assert outcome.status == STATUS_FAILED
    assert engine.encoded == []
    assert engine.max_in_flight == 0
    assert sorted(p.name for p in tmp_path.iterdir()) == ["a.webp"]
    assert context.counter.value == 1


def test_cancel_during_encode_discards_before_commit(tmp_path: Path) -> None:
    source = write_fake_source(tmp_path / "a.webp")

    class CancellingEngine(FakeEngine):
        def encode(self, plan, destination: Path) -> None:
            super().encode(plan, destination)
            context.cancel_event.set()

    context = make_context(CancellingEngine())

    outcome = convert_file(CandidateFile.from_path(source), context)

    assert outcome.status == STATUS_FAILED
    assert sorted(p.name for p in tmp_path.iterdir()) == ["a.webp"]


def test_counter_increments_even_when_worker_raises(tmp_path: Path) -> None:
    source = write_fake_source(tmp_path / "a.webp")

    class ExplodingEngine(FakeEngine):
        def probe_frame_count(self, path: Path) -> int:
            raise RuntimeError("boom")

    context = make_context(ExplodingEngine())

    with pytest.raises(RuntimeError):
        convert_file(CandidateFile.from_path(source), context)

    assert context.counter.value == 1


@pytest.mark.parametrize(
    ("detail", "hint"),
    [
        ("unable to open image `x.jpg': Permission denied", HINT_PERMISSION),
        ("not authorized `x.webp' @ error/constitute.c", HINT_PERMISSION),
        ("No space left on device", HINT_DISK_SPACE),
        ("improper image header `x.webp'", HINT_CORRUPT_INPUT),
        ("corrupt image `x.webp'", HINT_CORRUPT_INPUT),
        ("something unexpected", None),
    ],
)
def test_diagnose_failure(detail: str, hint: Optional[str]) -> None:
    assert diagnose_failure(detail) == hint


@pytest.mark.usefixtures("requires_webp")
def test_pillow_engine_converts_static_to_jpeg(tmp_path: Path) -> None:
    source = save_static_webp(tmp_path / "a.webp", color="red", size=(40, 20))

    outcome = convert_file(CandidateFile.from_path(source), make_context(PillowEngine()))

    assert outcome.status == STATUS_SUCCESS
    with Image.open(tmp_path / "a.jpg") as img:
        assert img.format == "JPEG"
        assert img.size == (40, 20)
        assert img.mode == "RGB"


@pytest.mark.usefixtures("requires_webp")
def test_pillow_engine_preserves_animation(tmp_path: Path) -> None:
    source = save_animated_webp(tmp_path / "anim.webp")

    outcome = convert_file(CandidateFile.from_path(source), make_context(PillowEngine()))

    assert outcome.status == STATUS_SUCCESS
    with Image.open(tmp_path / "anim.gif") as img:
        assert img.format == "GIF"
        assert getattr(img, "n_frames", 1) == 3
