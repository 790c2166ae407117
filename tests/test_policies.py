from __future__ import annotations

import pytest

from gallery_importer.domain.gallery import ImporterOptions, deletion_targets
from gallery_importer.domain.policies import ResourceAwareExecutionPolicy, StepPacingPolicy

_MEGABYTE = 1024 * 1024


@pytest.mark.parametrize(
    ("elapsed", "expected"),
    [(0.5, 1.0), (11.9, 1.0), (12.0, 5.0), (20.0, 5.0)],
)
def test_pacing_delay_backs_off_after_slow_steps(elapsed: float, expected: float) -> None:
    assert StepPacingPolicy().next_delay(elapsed) == expected


def test_pacing_batch_size_shrinks_and_recovers() -> None:
    pacing = StepPacingPolicy()

    assert pacing.next_batch_size(5, 5, 16.0) == 2
    assert pacing.next_batch_size(1, 5, 30.0) == 1
    assert pacing.next_batch_size(2, 5, 1.0) == 4
    assert pacing.next_batch_size(4, 5, 1.0) == 5
    assert pacing.next_batch_size(4, 5, 10.0) == 4


def test_large_upload_runs_in_background() -> None:
    decision = ResourceAwareExecutionPolicy().decide(
        payload_size_bytes=4 * _MEGABYTE,
        options=ImporterOptions(),
    )

    assert decision.background
    assert decision.reason == "Large file detected (4.00 MB)."


def test_memory_estimate_forces_background() -> None:
    policy = ResourceAwareExecutionPolicy(
        size_threshold_bytes=100 * _MEGABYTE,
        memory_budget_bytes=128 * _MEGABYTE,
    )

    decision = policy.decide(payload_size_bytes=20 * _MEGABYTE, options=ImporterOptions())

    assert decision.background
    assert decision.reason == "Insufficient memory for synchronous import."


def test_image_downloads_run_in_background() -> None:
    decision = ResourceAwareExecutionPolicy().decide(
        payload_size_bytes=1024,
        options=ImporterOptions(download_images=True),
    )

    assert decision.background
    assert decision.reason == "Background processing enabled for image downloads."


def test_small_upload_follows_request() -> None:
    policy = ResourceAwareExecutionPolicy()

    assert not policy.decide(payload_size_bytes=1024, options=ImporterOptions()).background
    requested = policy.decide(payload_size_bytes=1024, options=ImporterOptions(), requested=True)
    assert requested.background
    assert requested.reason is None


def test_options_overrides_ignore_unset_values() -> None:
    defaults = ImporterOptions(skip_existing=True, source_base_url="https://old.example.com")

    options = defaults.with_overrides(
        {"skip_existing": None, "download_images": True, "unrelated": "x"}
    )

    assert options.skip_existing
    assert options.download_images
    assert options.source_base_url == "https://old.example.com"
    assert options.to_job_options() == {
        "skip_existing": True,
        "download_images": True,
        "source_base_url": "https://old.example.com",
    }


def test_deletion_targets_list_images_before_terms() -> None:
    assert deletion_targets(["3", "4"], ["9"]) == [
        {"type": "image", "id": "3"},
        {"type": "image", "id": "4"},
        {"type": "term", "id": "9"},
    ]
