"""Test that the project setup is working correctly."""

import mint_sentinel


def test_version() -> None:
    """Test that version is defined."""
    assert mint_sentinel.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from mint_sentinel import detector, feed, ingestor, pipeline, profiler, sink

    # Just verify imports work
    assert ingestor is not None
    assert profiler is not None
    assert detector is not None
    assert feed is not None
    assert pipeline is not None
    assert sink is not None
